"""
Accounts Domain Entities
========================

Pure Python entities for user accounts and their security state.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from src.config import Role


@dataclass(frozen=True)
class LockoutPolicy:
    """How many failures lock an account, and for how long."""
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.max_login_attempts,
            lockout_duration=timedelta(minutes=settings.lockout_duration_minutes),
        )


@dataclass
class AccountSecurityState:
    """
    Login-attempt counter and lockout window of one user.

    A lock in the future fails authentication whatever the password.
    """

    failed_attempt_count: int = 0
    locked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def record_failed_attempt(self, now: datetime, policy: LockoutPolicy) -> bool:
        """
        Count one failed attempt.

        Returns:
            True if this attempt put the account into lockout
        """
        # Stale lock: start counting again
        if self.locked_until is not None and self.locked_until <= now:
            self.failed_attempt_count = 1
            self.locked_until = None
            return False

        triggered = False
        if self.failed_attempt_count + 1 >= policy.max_attempts and not self.is_locked(now):
            self.locked_until = now + policy.lockout_duration
            triggered = True

        self.failed_attempt_count += 1
        return triggered

    def reset_attempts(self) -> None:
        self.failed_attempt_count = 0
        self.locked_until = None


@dataclass
class MFAState:
    """Second-factor enrollment and pending login challenge."""

    enabled: bool = False
    secret: Optional[str] = None
    challenge_id: Optional[str] = None
    challenge_expires_at: Optional[datetime] = None

    @property
    def enrollment_pending(self) -> bool:
        return self.secret is not None and not self.enabled

    def has_valid_challenge(self, challenge_id: str, now: datetime) -> bool:
        return (
            self.challenge_id is not None
            and self.challenge_id == challenge_id
            and self.challenge_expires_at is not None
            and self.challenge_expires_at > now
        )

    def clear_challenge(self) -> None:
        self.challenge_id = None
        self.challenge_expires_at = None


@dataclass
class UserAccount:
    """
    User entity as seen by the authentication path.

    Only the accounts context reads the password hash or MFA secret.
    """

    id: str
    username: str
    email: str
    role: Role
    password_hash: str
    created_at: datetime
    is_active: bool = True
    security: AccountSecurityState = field(default_factory=AccountSecurityState)
    mfa: MFAState = field(default_factory=MFAState)
    last_login_at: Optional[datetime] = None

    def __post_init__(self):
        self.role = Role.parse(self.role)


@dataclass(frozen=True)
class PasswordPolicy:
    """Complexity rules for new passwords."""
    min_length: int = 12
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special: bool = True

    def violations(self, password: str) -> List[str]:
        """Human-readable list of unmet rules; empty when the password passes."""
        errors = []
        if len(password) < self.min_length:
            errors.append(f"At least {self.min_length} characters")
        if self.require_uppercase and not re.search(r"[A-Z]", password):
            errors.append("At least one uppercase letter")
        if self.require_lowercase and not re.search(r"[a-z]", password):
            errors.append("At least one lowercase letter")
        if self.require_numbers and not re.search(r"\d", password):
            errors.append("At least one digit")
        if self.require_special and not re.search(r"[^A-Za-z0-9]", password):
            errors.append("At least one special character")
        return errors
