"""
Accounts Domain Layer
=====================

Contains:
- Entities: UserAccount, AccountSecurityState, MFAState
- Policies: LockoutPolicy, PasswordPolicy

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.accounts.domain.entities import (
    AccountSecurityState,
    LockoutPolicy,
    MFAState,
    PasswordPolicy,
    UserAccount,
)

__all__ = [
    "AccountSecurityState",
    "LockoutPolicy",
    "MFAState",
    "PasswordPolicy",
    "UserAccount",
]
