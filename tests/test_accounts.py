"""Lockout, login protocol and MFA enrollment tests."""
from datetime import timedelta

import pyotp
import pytest

from src.accounts.application import AccountSecurityService, AuthenticationService, AuthenticationStatus
from src.accounts.domain import AccountSecurityState, LockoutPolicy, PasswordPolicy
from src.accounts.infrastructure import SQLAlchemyUserRepository, TOTPVerifier
from src.config import settings
from src.core import (
    AccountLockedException,
    ConflictException,
    InvalidCredentialsException,
    InvalidMFACodeException,
    ValidationException,
)
from src.infrastructure.database import utcnow
from tests.conftest import PASSWORD, audit_entries, verifier


POLICY = LockoutPolicy(max_attempts=5, lockout_duration=timedelta(minutes=30))


def make_auth_service(session, audit_service) -> AuthenticationService:
    return AuthenticationService(
        session=session,
        user_repository=SQLAlchemyUserRepository(session),
        audit_service=audit_service,
        credential_verifier=verifier,
        code_verifier=TOTPVerifier("HelpdeskTest", valid_window=2),
        settings=settings,
    )


def wrong_code(secret: str) -> str:
    return f"{(int(pyotp.TOTP(secret).now()) + 500000) % 1000000:06d}"


class TestAccountSecurityState:
    def test_locks_on_max_attempts(self):
        state = AccountSecurityState()
        now = utcnow()
        results = [state.record_failed_attempt(now, POLICY) for _ in range(5)]
        assert results == [False, False, False, False, True]
        assert state.failed_attempt_count == 5
        assert state.locked_until == now + timedelta(minutes=30)
        assert state.is_locked(now + timedelta(minutes=29))
        assert not state.is_locked(now + timedelta(minutes=30))

    def test_failure_after_expiry_restarts_count(self):
        state = AccountSecurityState()
        now = utcnow()
        for _ in range(5):
            state.record_failed_attempt(now, POLICY)

        later = now + timedelta(minutes=31)
        assert state.record_failed_attempt(later, POLICY) is False
        assert state.failed_attempt_count == 1
        assert state.locked_until is None

    def test_reset(self):
        state = AccountSecurityState(failed_attempt_count=3, locked_until=utcnow())
        state.reset_attempts()
        assert state.failed_attempt_count == 0
        assert state.locked_until is None

    def test_policy_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            LockoutPolicy(max_attempts=0)


class TestPasswordPolicy:
    def test_strong_password_passes(self):
        assert PasswordPolicy().violations(PASSWORD) == []

    def test_weak_password_lists_every_rule(self):
        errors = PasswordPolicy().violations("abc")
        assert len(errors) == 4


@pytest.mark.asyncio
class TestAccountSecurityService:
    async def test_lockout_and_expiry(self, db_session, alice):
        service = AccountSecurityService(db_session, SQLAlchemyUserRepository(db_session), POLICY)
        now = utcnow()

        for _ in range(4):
            outcome = await service.record_failed_attempt(alice.id, now)
            assert not outcome.lock_triggered
        outcome = await service.record_failed_attempt(alice.id, now)
        assert outcome.lock_triggered
        assert outcome.failed_attempt_count == 5

        assert await service.is_locked(alice.id, now + timedelta(minutes=10))
        assert not await service.is_locked(alice.id, now + timedelta(minutes=31))

        outcome = await service.record_failed_attempt(alice.id, now + timedelta(minutes=31))
        assert outcome.failed_attempt_count == 1
        assert outcome.locked_until is None

    async def test_reset_attempts(self, db_session, alice):
        service = AccountSecurityService(db_session, SQLAlchemyUserRepository(db_session), POLICY)
        await service.record_failed_attempt(alice.id)
        await service.reset_attempts(alice.id)

        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.security.failed_attempt_count == 0


@pytest.mark.asyncio
class TestLogin:
    async def test_successful_login(self, db_session, audit_service, session_factory, alice, origin):
        result = await make_auth_service(db_session, audit_service).login("alice", PASSWORD, origin)
        assert result.status == AuthenticationStatus.AUTHENTICATED
        assert result.user_id == alice.id

        entries = await audit_entries(session_factory, action="login_success")
        assert len(entries) == 1
        assert entries[0].ip_address == "10.0.0.7"

    async def test_unknown_user(self, db_session, audit_service, session_factory, origin):
        with pytest.raises(InvalidCredentialsException):
            await make_auth_service(db_session, audit_service).login("nobody", PASSWORD, origin)

        entries = await audit_entries(session_factory, action="login_failed")
        assert entries[0].actor_id is None
        assert entries[0].success is False

    async def test_locked_account_rejects_correct_password(
        self, db_session, audit_service, session_factory, alice, origin
    ):
        auth = make_auth_service(db_session, audit_service)
        for _ in range(settings.max_login_attempts):
            with pytest.raises(InvalidCredentialsException):
                await auth.login("alice", "wrong-password", origin)

        with pytest.raises(AccountLockedException) as exc_info:
            await auth.login("alice", PASSWORD, origin)
        assert exc_info.value.locked_until is not None

        assert len(await audit_entries(session_factory, action="account_locked")) == 1
        assert len(await audit_entries(session_factory, action="login_blocked")) == 1

    async def test_success_resets_counter(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        for _ in range(2):
            with pytest.raises(InvalidCredentialsException):
                await auth.login("alice", "wrong-password", origin)
        await auth.login("alice", PASSWORD, origin)

        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.security.failed_attempt_count == 0
        assert account.last_login_at is not None


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_customer(self, db_session, audit_service, session_factory, origin):
        account = await make_auth_service(db_session, audit_service).register(
            "newbie", "Newbie@Helpdesk.test", PASSWORD, origin
        )
        assert account.role.value == "customer"
        assert account.email == "newbie@helpdesk.test"
        assert len(await audit_entries(session_factory, action="user_registered")) == 1

    async def test_weak_password_rejected(self, db_session, audit_service, origin):
        with pytest.raises(ValidationException) as exc_info:
            await make_auth_service(db_session, audit_service).register(
                "newbie", "newbie@helpdesk.test", "short", origin
            )
        assert exc_info.value.details["errors"]

    async def test_duplicate_username(self, db_session, audit_service, alice, origin):
        with pytest.raises(ConflictException):
            await make_auth_service(db_session, audit_service).register(
                "alice", "other@helpdesk.test", PASSWORD, origin
            )


@pytest.mark.asyncio
class TestMFA:
    async def test_enrollment_then_two_step_login(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)

        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)
        assert enrollment.provisioning_uri.startswith("otpauth://totp/")

        await auth.confirm_mfa_enrollment(alice.id, pyotp.TOTP(enrollment.secret).now(), origin)

        step1 = await auth.login("alice", PASSWORD, origin)
        assert step1.status == AuthenticationStatus.MFA_REQUIRED
        assert step1.challenge_id

        step2 = await auth.verify_login_mfa(step1.challenge_id, pyotp.TOTP(enrollment.secret).now(), origin)
        assert step2.status == AuthenticationStatus.AUTHENTICATED

        # The challenge is single use
        with pytest.raises(InvalidCredentialsException):
            await auth.verify_login_mfa(step1.challenge_id, pyotp.TOTP(enrollment.secret).now(), origin)

    async def test_unverified_secret_does_not_enable_mfa(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        await auth.begin_mfa_enrollment(alice.id, origin)

        result = await auth.login("alice", PASSWORD, origin)
        assert result.status == AuthenticationStatus.AUTHENTICATED

        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.mfa.enrollment_pending
        assert not account.mfa.enabled

    async def test_wrong_enrollment_code(self, db_session, audit_service, session_factory, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)

        with pytest.raises(InvalidMFACodeException):
            await auth.confirm_mfa_enrollment(alice.id, wrong_code(enrollment.secret), origin)
        assert len(await audit_entries(session_factory, action="mfa_failed")) == 1

    async def test_verify_without_setup(self, db_session, audit_service, alice, origin):
        with pytest.raises(ValidationException):
            await make_auth_service(db_session, audit_service).confirm_mfa_enrollment(alice.id, "123456", origin)

    async def test_wrong_login_code_counts_towards_lockout(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)
        await auth.confirm_mfa_enrollment(alice.id, pyotp.TOTP(enrollment.secret).now(), origin)

        challenge = await auth.login("alice", PASSWORD, origin)
        with pytest.raises(InvalidMFACodeException):
            await auth.verify_login_mfa(challenge.challenge_id, wrong_code(enrollment.secret), origin)

        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.security.failed_attempt_count == 1

    async def test_password_step_keeps_mfa_failures(
        self, db_session, audit_service, session_factory, alice, origin
    ):
        auth = make_auth_service(db_session, audit_service)
        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)
        await auth.confirm_mfa_enrollment(alice.id, pyotp.TOTP(enrollment.secret).now(), origin)

        challenge = await auth.login("alice", PASSWORD, origin)
        for _ in range(4):
            with pytest.raises(InvalidMFACodeException):
                await auth.verify_login_mfa(challenge.challenge_id, wrong_code(enrollment.secret), origin)

        # A correct password starts a new challenge without clearing the count
        challenge = await auth.login("alice", PASSWORD, origin)
        assert challenge.status == AuthenticationStatus.MFA_REQUIRED
        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.security.failed_attempt_count == 4

        with pytest.raises(InvalidMFACodeException):
            await auth.verify_login_mfa(challenge.challenge_id, wrong_code(enrollment.secret), origin)

        with pytest.raises(AccountLockedException):
            await auth.verify_login_mfa(challenge.challenge_id, pyotp.TOTP(enrollment.secret).now(), origin)
        with pytest.raises(AccountLockedException):
            await auth.login("alice", PASSWORD, origin)
        assert len(await audit_entries(session_factory, action="account_locked")) == 1

    async def test_correct_code_resets_counter(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)
        await auth.confirm_mfa_enrollment(alice.id, pyotp.TOTP(enrollment.secret).now(), origin)

        challenge = await auth.login("alice", PASSWORD, origin)
        with pytest.raises(InvalidMFACodeException):
            await auth.verify_login_mfa(challenge.challenge_id, wrong_code(enrollment.secret), origin)
        await auth.verify_login_mfa(challenge.challenge_id, pyotp.TOTP(enrollment.secret).now(), origin)

        account = await SQLAlchemyUserRepository(db_session).get_by_id(alice.id)
        assert account.security.failed_attempt_count == 0

    async def test_disable_requires_password(self, db_session, audit_service, alice, origin):
        auth = make_auth_service(db_session, audit_service)
        enrollment = await auth.begin_mfa_enrollment(alice.id, origin)
        await auth.confirm_mfa_enrollment(alice.id, pyotp.TOTP(enrollment.secret).now(), origin)

        with pytest.raises(InvalidCredentialsException):
            await auth.disable_mfa(alice.id, "wrong-password", origin)

        await auth.disable_mfa(alice.id, PASSWORD, origin)
        result = await auth.login("alice", PASSWORD, origin)
        assert result.status == AuthenticationStatus.AUTHENTICATED
