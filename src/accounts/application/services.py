"""
Accounts Application Services
=============================

Lockout bookkeeping and the authentication protocol.

Decision order on login: unknown user, then lock, then password, then MFA.
The lock check precedes the password check so a locked account never
reveals whether the password was right.

Every outcome is audited after the account transaction has ended.
"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.accounts.domain import LockoutPolicy, PasswordPolicy, UserAccount
from src.audit.application import AuditService
from src.config import AuditAction, AuditResource, Role, Settings
from src.core import (
    Origin,
    AccountLockedException,
    ConflictException,
    InvalidCredentialsException,
    InvalidMFACodeException,
    ResourceNotFoundException,
    ValidationException,
)
from src.infrastructure.database import commit_or_raise, utcnow
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Collaborator Interfaces (Dependency Inversion) ==========

class IUserRepository(ABC):
    """Interface for user data access."""

    @abstractmethod
    async def get_by_id(self, user_id: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get user by ID, optionally row-locked."""

    @abstractmethod
    async def get_by_username(self, username: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get user by username."""

    @abstractmethod
    async def get_by_challenge(self, challenge_id: str, for_update: bool = False) -> Optional[UserAccount]:
        """Get the user holding a pending MFA challenge."""

    @abstractmethod
    async def add(self, account: UserAccount) -> UserAccount:
        """Insert a new user."""

    @abstractmethod
    async def save(self, account: UserAccount) -> None:
        """Write back security, MFA and login fields."""


class ICredentialVerifier(ABC):
    """Password hashing collaborator."""

    @abstractmethod
    def hash_password(self, password: str) -> str:
        """Hash a plaintext password."""

    @abstractmethod
    def verify(self, password: str, password_hash: str) -> bool:
        """True if the password matches the stored hash."""


class IOneTimeCodeVerifier(ABC):
    """TOTP collaborator."""

    @abstractmethod
    def generate_secret(self) -> str:
        """New base32 shared secret."""

    @abstractmethod
    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI for authenticator apps."""

    @abstractmethod
    def verify(self, secret: str, code: str, at: Optional[datetime] = None) -> bool:
        """True if the code is valid within the configured step window."""


# ========== Results ==========

class AuthenticationStatus(str, Enum):
    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"


@dataclass(frozen=True)
class AuthenticationResult:
    """Outcome of a successful login step; failures raise instead."""
    status: AuthenticationStatus
    user_id: str
    role: Role
    challenge_id: Optional[str] = None
    challenge_expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class FailedAttemptOutcome:
    failed_attempt_count: int
    locked_until: Optional[datetime]
    lock_triggered: bool


@dataclass(frozen=True)
class MFAEnrollment:
    secret: str
    provisioning_uri: str


# ========== Application Services ==========

class AccountSecurityService:
    """
    Failed-attempt counter and lockout window, one transaction per call.

    Rows are loaded FOR UPDATE so concurrent failures do not lose increments.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_repository: IUserRepository,
        policy: Optional[LockoutPolicy] = None
    ):
        self._session = session
        self._users = user_repository
        self._policy = policy or LockoutPolicy()

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    async def _load(self, user_id: str) -> UserAccount:
        account = await self._users.get_by_id(user_id, for_update=True)
        if account is None:
            await self._session.rollback()
            raise ResourceNotFoundException("User", user_id)
        return account

    async def is_locked(self, user_id: str, now: Optional[datetime] = None) -> bool:
        account = await self._users.get_by_id(user_id)
        if account is None:
            raise ResourceNotFoundException("User", user_id)
        return account.security.is_locked(now or utcnow())

    async def record_failed_attempt(
        self,
        user_id: str,
        now: Optional[datetime] = None
    ) -> FailedAttemptOutcome:
        """Count a failure and lock the account once the policy limit is hit."""
        now = now or utcnow()
        account = await self._load(user_id)

        triggered = account.security.record_failed_attempt(now, self._policy)
        await self._users.save(account)
        await commit_or_raise(self._session, "record failed login attempt")

        if triggered:
            logger.warning(
                "Account locked",
                extra={"user_id": user_id, "locked_until": account.security.locked_until.isoformat()}
            )

        return FailedAttemptOutcome(
            failed_attempt_count=account.security.failed_attempt_count,
            locked_until=account.security.locked_until,
            lock_triggered=triggered,
        )

    async def reset_attempts(self, user_id: str) -> None:
        account = await self._load(user_id)
        account.security.reset_attempts()
        await self._users.save(account)
        await commit_or_raise(self._session, "reset login attempts")


class AuthenticationService:
    """
    Password + optional TOTP authentication.

    Step 1 (`login`) checks the password. Accounts with MFA enabled get a
    short-lived challenge id instead of being authenticated; step 2
    (`verify_login_mfa`) redeems it with a one-time code.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_repository: IUserRepository,
        audit_service: AuditService,
        credential_verifier: ICredentialVerifier,
        code_verifier: IOneTimeCodeVerifier,
        settings: Settings,
        security_service: Optional[AccountSecurityService] = None
    ):
        self._session = session
        self._users = user_repository
        self._audit = audit_service
        self._credentials = credential_verifier
        self._codes = code_verifier
        self._settings = settings
        self._security = security_service or AccountSecurityService(
            session, user_repository, LockoutPolicy.from_settings(settings)
        )
        self._password_policy = PasswordPolicy(min_length=settings.password_min_length)

    async def _fail_attempt(
        self,
        account: UserAccount,
        action: AuditAction,
        reason: str,
        origin: Origin
    ) -> None:
        outcome = await self._security.record_failed_attempt(account.id)

        await self._audit.record(
            actor_id=account.id,
            action=action,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            details={
                "username": account.username,
                "reason": reason,
                "failed_attempt_count": outcome.failed_attempt_count,
            },
            origin=origin,
            success=False,
            error_message=reason,
        )
        if outcome.lock_triggered:
            await self._audit.record(
                actor_id=account.id,
                action=AuditAction.ACCOUNT_LOCKED,
                resource_type=AuditResource.USER,
                resource_id=account.id,
                details={
                    "reason": "Too many failed attempts",
                    "locked_until": outcome.locked_until.isoformat(),
                },
                origin=origin,
                success=False,
            )

    async def _reject_locked(self, account: UserAccount, origin: Origin) -> None:
        await self._session.rollback()
        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.LOGIN_BLOCKED,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            details={"username": account.username, "reason": "Account locked"},
            origin=origin,
            success=False,
            error_message="Account locked",
        )
        raise AccountLockedException(account.security.locked_until)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        origin: Origin,
        role: Role = Role.CUSTOMER
    ) -> UserAccount:
        """Create an account; self-registration always yields a customer."""
        username = username.replace("<", "").replace(">", "").strip()
        email = email.replace("<", "").replace(">", "").strip().lower()

        errors = self._password_policy.violations(password)
        if errors:
            raise ValidationException("Password does not meet the policy", {"errors": errors})

        account = UserAccount(
            id=str(uuid4()),
            username=username,
            email=email,
            role=role,
            password_hash=self._credentials.hash_password(password),
            created_at=utcnow(),
        )

        try:
            await self._users.add(account)
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise ConflictException("Username or email already exists")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.USER_REGISTERED,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            details={"username": username, "role": account.role.value},
            origin=origin,
        )
        return account

    async def login(self, username: str, password: str, origin: Origin) -> AuthenticationResult:
        """
        First authentication step.

        Raises:
            InvalidCredentialsException: unknown user or wrong password
            AccountLockedException: account is inside its lockout window
        """
        now = utcnow()
        account = await self._users.get_by_username(username)

        if account is None or not account.is_active:
            await self._session.rollback()
            await self._audit.record(
                actor_id=None,
                action=AuditAction.LOGIN_FAILED,
                resource_type=AuditResource.USER,
                details={"username": username, "reason": "Unknown or inactive user"},
                origin=origin,
                success=False,
                error_message="Unknown or inactive user",
            )
            raise InvalidCredentialsException()

        if account.security.is_locked(now):
            await self._reject_locked(account, origin)

        if not self._credentials.verify(password, account.password_hash):
            await self._session.rollback()
            await self._fail_attempt(account, AuditAction.LOGIN_FAILED, "Wrong password", origin)
            raise InvalidCredentialsException()

        account = await self._users.get_by_id(account.id, for_update=True)

        # The counter survives step 1 so wrong MFA codes keep accumulating
        if account.mfa.enabled:
            account.mfa.challenge_id = secrets.token_urlsafe(32)
            account.mfa.challenge_expires_at = now + timedelta(seconds=self._settings.mfa_challenge_ttl_seconds)
            await self._users.save(account)
            await commit_or_raise(self._session, "start MFA login")

            return AuthenticationResult(
                status=AuthenticationStatus.MFA_REQUIRED,
                user_id=account.id,
                role=account.role,
                challenge_id=account.mfa.challenge_id,
                challenge_expires_at=account.mfa.challenge_expires_at,
            )

        account.security.reset_attempts()
        account.last_login_at = now
        await self._users.save(account)
        await commit_or_raise(self._session, "complete login")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.LOGIN_SUCCESS,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            details={"username": account.username, "mfa": False},
            origin=origin,
        )
        return AuthenticationResult(
            status=AuthenticationStatus.AUTHENTICATED,
            user_id=account.id,
            role=account.role,
        )

    async def verify_login_mfa(
        self,
        challenge_id: str,
        code: str,
        origin: Origin,
        at: Optional[datetime] = None
    ) -> AuthenticationResult:
        """
        Second authentication step.

        A wrong code counts towards the lockout like a wrong password.
        """
        now = at or utcnow()
        account = await self._users.get_by_challenge(challenge_id)

        if account is None or not account.mfa.has_valid_challenge(challenge_id, now):
            await self._session.rollback()
            await self._audit.record(
                actor_id=account.id if account else None,
                action=AuditAction.LOGIN_FAILED,
                resource_type=AuditResource.USER,
                resource_id=account.id if account else None,
                details={"reason": "Invalid or expired MFA challenge"},
                origin=origin,
                success=False,
                error_message="Invalid or expired MFA challenge",
            )
            raise InvalidCredentialsException("MFA challenge is invalid or has expired")

        if account.security.is_locked(now):
            await self._reject_locked(account, origin)

        if not account.mfa.enabled or not self._codes.verify(account.mfa.secret, code, at):
            await self._session.rollback()
            await self._fail_attempt(account, AuditAction.MFA_FAILED, "Invalid MFA code", origin)
            raise InvalidMFACodeException()

        account = await self._users.get_by_id(account.id, for_update=True)
        account.mfa.clear_challenge()
        account.security.reset_attempts()
        account.last_login_at = now
        await self._users.save(account)
        await commit_or_raise(self._session, "complete MFA login")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.LOGIN_SUCCESS,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            details={"username": account.username, "mfa": True},
            origin=origin,
        )
        return AuthenticationResult(
            status=AuthenticationStatus.AUTHENTICATED,
            user_id=account.id,
            role=account.role,
        )

    async def _load_for_update(self, user_id: str) -> UserAccount:
        account = await self._users.get_by_id(user_id, for_update=True)
        if account is None:
            await self._session.rollback()
            raise ResourceNotFoundException("User", user_id)
        return account

    async def begin_mfa_enrollment(self, user_id: str, origin: Origin) -> MFAEnrollment:
        """
        Phase one: store a fresh secret without enabling MFA.

        Calling it again before confirmation replaces the pending secret.
        """
        account = await self._load_for_update(user_id)
        if account.mfa.enabled:
            await self._session.rollback()
            raise ValidationException("MFA is already enabled")

        account.mfa.secret = self._codes.generate_secret()
        await self._users.save(account)
        await commit_or_raise(self._session, "start MFA enrollment")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.MFA_SETUP_STARTED,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            origin=origin,
        )
        return MFAEnrollment(
            secret=account.mfa.secret,
            provisioning_uri=self._codes.provisioning_uri(account.mfa.secret, account.username),
        )

    async def confirm_mfa_enrollment(
        self,
        user_id: str,
        code: str,
        origin: Origin,
        at: Optional[datetime] = None
    ) -> None:
        """Phase two: the first valid code turns MFA on."""
        account = await self._load_for_update(user_id)
        if account.mfa.enabled:
            await self._session.rollback()
            raise ValidationException("MFA is already enabled")
        if not account.mfa.enrollment_pending:
            await self._session.rollback()
            raise ValidationException("Start MFA setup before verifying a code")

        if not self._codes.verify(account.mfa.secret, code, at):
            await self._session.rollback()
            await self._audit.record(
                actor_id=account.id,
                action=AuditAction.MFA_FAILED,
                resource_type=AuditResource.USER,
                resource_id=account.id,
                details={"phase": "enrollment"},
                origin=origin,
                success=False,
                error_message="Invalid MFA code",
            )
            raise InvalidMFACodeException()

        account.mfa.enabled = True
        await self._users.save(account)
        await commit_or_raise(self._session, "enable MFA")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.MFA_ENABLED,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            origin=origin,
        )

    async def disable_mfa(self, user_id: str, password: str, origin: Origin) -> None:
        """Turn MFA off after re-checking the password."""
        account = await self._load_for_update(user_id)

        if not self._credentials.verify(password, account.password_hash):
            await self._session.rollback()
            await self._audit.record(
                actor_id=account.id,
                action=AuditAction.MFA_DISABLED,
                resource_type=AuditResource.USER,
                resource_id=account.id,
                details={"reason": "Wrong password"},
                origin=origin,
                success=False,
                error_message="Wrong password",
            )
            raise InvalidCredentialsException("Password is incorrect")

        account.mfa.enabled = False
        account.mfa.secret = None
        account.mfa.clear_challenge()
        await self._users.save(account)
        await commit_or_raise(self._session, "disable MFA")

        await self._audit.record(
            actor_id=account.id,
            action=AuditAction.MFA_DISABLED,
            resource_type=AuditResource.USER,
            resource_id=account.id,
            origin=origin,
        )

    async def get_user(self, user_id: str) -> UserAccount:
        account = await self._users.get_by_id(user_id)
        if account is None:
            raise ResourceNotFoundException("User", user_id)
        return account
