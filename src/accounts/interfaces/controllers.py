"""
Authentication Controllers (API Routes)
=======================================

FastAPI routes for registration, login and MFA management.

Controllers are thin - they delegate to application services. Issuing
session tokens is left to the gateway that calls these routes.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.accounts.application import (
    AuthenticationService,
    AuthenticationResult,
    RegisterRequest,
    LoginRequest,
    LoginMFARequest,
    MFACodeRequest,
    MFADisableRequest,
    UserResponse,
    AuthenticationResponse,
    MFASetupResponse,
    MFAStatusResponse,
)
from src.accounts.domain import UserAccount
from src.accounts.infrastructure import (
    SQLAlchemyUserRepository,
    BcryptCredentialVerifier,
    TOTPVerifier,
)
from src.audit.application import AuditService
from src.audit.interfaces.controllers import get_audit_service
from src.config import settings
from src.core import Origin, Principal
from src.shared.api.dependencies import get_db_session, get_origin, get_principal

router = APIRouter(prefix="/auth", tags=["Authentication"])

_credential_verifier = BcryptCredentialVerifier()


# ========== Dependencies ==========

async def get_authentication_service(
    session: AsyncSession = Depends(get_db_session),
    audit_service: AuditService = Depends(get_audit_service)
) -> AuthenticationService:
    """Get authentication service instance."""
    return AuthenticationService(
        session=session,
        user_repository=SQLAlchemyUserRepository(session),
        audit_service=audit_service,
        credential_verifier=_credential_verifier,
        code_verifier=TOTPVerifier(settings.mfa_issuer, settings.mfa_valid_window),
        settings=settings,
    )


def _auth_response(result: AuthenticationResult) -> AuthenticationResponse:
    return AuthenticationResponse(
        status=result.status.value,
        user_id=result.user_id,
        role=result.role.value,
        challenge_id=result.challenge_id,
        challenge_expires_at=result.challenge_expires_at,
    )


def _user_response(account: UserAccount) -> UserResponse:
    return UserResponse(
        id=account.id,
        username=account.username,
        email=account.email,
        role=account.role.value,
        is_active=account.is_active,
        mfa_enabled=account.mfa.enabled,
        last_login_at=account.last_login_at,
        created_at=account.created_at,
    )


# ========== Route Handlers ==========

@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer account",
    responses={400: {"description": "Password policy violated"}, 409: {"description": "Username or email taken"}}
)
async def register(
    request: RegisterRequest,
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    account = await auth_service.register(request.username, request.email, request.password, origin)
    return _user_response(account)


@router.post(
    "/login",
    response_model=AuthenticationResponse,
    summary="Password login",
    description="""
    First authentication step.

    Returns `authenticated`, or `mfa_required` with a `challenge_id` to redeem
    at `/auth/login/mfa`. A locked account answers 423 whatever the password.
    """,
    responses={401: {"description": "Invalid credentials"}, 423: {"description": "Account locked"}}
)
async def login(
    request: LoginRequest,
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    result = await auth_service.login(request.username, request.password, origin)
    return _auth_response(result)


@router.post(
    "/login/mfa",
    response_model=AuthenticationResponse,
    summary="Second login step",
    responses={401: {"description": "Invalid challenge or code"}, 423: {"description": "Account locked"}}
)
async def login_mfa(
    request: LoginMFARequest,
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    result = await auth_service.verify_login_mfa(request.challenge_id, request.code, origin)
    return _auth_response(result)


@router.get("/me", response_model=UserResponse, summary="Current user")
async def me(
    principal: Principal = Depends(get_principal),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    account = await auth_service.get_user(principal.user_id)
    return _user_response(account)


@router.post(
    "/mfa/setup",
    response_model=MFASetupResponse,
    summary="Start MFA enrollment",
    description="Generates a secret that stays inactive until a code is verified at `/auth/mfa/verify`."
)
async def mfa_setup(
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    enrollment = await auth_service.begin_mfa_enrollment(principal.user_id, origin)
    return MFASetupResponse(secret=enrollment.secret, provisioning_uri=enrollment.provisioning_uri)


@router.post("/mfa/verify", response_model=MFAStatusResponse, summary="Confirm MFA enrollment")
async def mfa_verify(
    request: MFACodeRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    await auth_service.confirm_mfa_enrollment(principal.user_id, request.code, origin)
    return MFAStatusResponse(mfa_enabled=True)


@router.post("/mfa/disable", response_model=MFAStatusResponse, summary="Disable MFA")
async def mfa_disable(
    request: MFADisableRequest,
    principal: Principal = Depends(get_principal),
    origin: Origin = Depends(get_origin),
    auth_service: AuthenticationService = Depends(get_authentication_service)
):
    await auth_service.disable_mfa(principal.user_id, request.password, origin)
    return MFAStatusResponse(mfa_enabled=False)
