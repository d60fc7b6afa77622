"""
Accounts Application Layer
==========================

Contains:
- Services: AccountSecurityService, AuthenticationService
- DTOs: Authentication request/response models
- Collaborator interfaces: user repository, password and TOTP verifiers
"""

from src.accounts.application.dto import (
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
from src.accounts.application.services import (
    AccountSecurityService,
    AuthenticationService,
    AuthenticationResult,
    AuthenticationStatus,
    FailedAttemptOutcome,
    MFAEnrollment,
    IUserRepository,
    ICredentialVerifier,
    IOneTimeCodeVerifier,
)

__all__ = [
    # DTOs
    "RegisterRequest",
    "LoginRequest",
    "LoginMFARequest",
    "MFACodeRequest",
    "MFADisableRequest",
    "UserResponse",
    "AuthenticationResponse",
    "MFASetupResponse",
    "MFAStatusResponse",
    # Services
    "AccountSecurityService",
    "AuthenticationService",
    "AuthenticationResult",
    "AuthenticationStatus",
    "FailedAttemptOutcome",
    "MFAEnrollment",
    # Interfaces
    "IUserRepository",
    "ICredentialVerifier",
    "IOneTimeCodeVerifier",
]
