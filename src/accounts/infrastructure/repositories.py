"""
Accounts Infrastructure Repositories
====================================

SQLAlchemy implementation of the user repository.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.accounts.application.services import IUserRepository
from src.accounts.domain import AccountSecurityState, MFAState, UserAccount
from src.accounts.infrastructure.models import UserModel
from src.core import RepositoryException


def _to_domain(model: UserModel) -> UserAccount:
    return UserAccount(
        id=model.id,
        username=model.username,
        email=model.email,
        role=model.role,
        password_hash=model.password_hash,
        created_at=model.created_at,
        is_active=model.is_active,
        security=AccountSecurityState(
            failed_attempt_count=model.failed_attempt_count,
            locked_until=model.locked_until,
        ),
        mfa=MFAState(
            enabled=model.mfa_enabled,
            secret=model.mfa_secret,
            challenge_id=model.mfa_challenge_id,
            challenge_expires_at=model.mfa_challenge_expires_at,
        ),
        last_login_at=model.last_login_at,
    )


class SQLAlchemyUserRepository(IUserRepository):
    """
    SQLAlchemy implementation of user repository.

    `for_update` reads take a row lock (FOR UPDATE on PostgreSQL) and always
    refresh the identity map from the database.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _one(self, condition, for_update: bool) -> Optional[UserModel]:
        stmt = select(UserModel).where(condition)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get user by ID."""
        model = await self._one(UserModel.id == user_id, for_update)
        return _to_domain(model) if model else None

    async def get_by_username(self, username: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get user by username."""
        model = await self._one(UserModel.username == username, for_update)
        return _to_domain(model) if model else None

    async def get_by_challenge(self, challenge_id: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get the user holding a pending MFA challenge."""
        model = await self._one(UserModel.mfa_challenge_id == challenge_id, for_update)
        return _to_domain(model) if model else None

    async def add(self, account: UserAccount) -> UserAccount:
        """Insert a new user."""
        model = UserModel(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role.value,
            password_hash=account.password_hash,
            is_active=account.is_active,
            failed_attempt_count=account.security.failed_attempt_count,
            locked_until=account.security.locked_until,
            mfa_enabled=account.mfa.enabled,
            mfa_secret=account.mfa.secret,
            last_login_at=account.last_login_at,
            created_at=account.created_at,
        )
        self._session.add(model)
        await self._session.flush()
        return account

    async def save(self, account: UserAccount) -> None:
        """Write back security, MFA and login fields."""
        model = await self._session.get(UserModel, account.id)
        if model is None:
            raise RepositoryException(f"User {account.id} not found")

        model.failed_attempt_count = account.security.failed_attempt_count
        model.locked_until = account.security.locked_until
        model.mfa_enabled = account.mfa.enabled
        model.mfa_secret = account.mfa.secret
        model.mfa_challenge_id = account.mfa.challenge_id
        model.mfa_challenge_expires_at = account.mfa.challenge_expires_at
        model.last_login_at = account.last_login_at
        await self._session.flush()
