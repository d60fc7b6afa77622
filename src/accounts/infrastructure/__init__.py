"""
Accounts Infrastructure Layer
=============================

- Models: SQLAlchemy user model
- Repositories: user data access
- Security: bcrypt and TOTP verifiers
"""

from src.accounts.infrastructure.models import UserModel
from src.accounts.infrastructure.repositories import SQLAlchemyUserRepository
from src.accounts.infrastructure.security import BcryptCredentialVerifier, TOTPVerifier

__all__ = [
    "UserModel",
    "SQLAlchemyUserRepository",
    "BcryptCredentialVerifier",
    "TOTPVerifier",
]
