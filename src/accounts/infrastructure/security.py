"""
Credential and One-Time Code Verifiers
======================================

bcrypt password hashing and pyotp TOTP verification.
"""

from datetime import datetime
from typing import Optional

import bcrypt
import pyotp

from src.accounts.application.services import ICredentialVerifier, IOneTimeCodeVerifier


class BcryptCredentialVerifier(ICredentialVerifier):
    """bcrypt-backed password hashing."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False


class TOTPVerifier(IOneTimeCodeVerifier):
    """
    RFC 6238 codes via pyotp.

    `valid_window` is the accepted drift in 30-second steps on either side.
    """

    def __init__(self, issuer: str, valid_window: int = 2):
        self._issuer = issuer
        self._valid_window = valid_window

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self._issuer)

    def verify(self, secret: str, code: str, at: Optional[datetime] = None) -> bool:
        if not secret or not code:
            return False
        return pyotp.TOTP(secret).verify(code, for_time=at, valid_window=self._valid_window)
