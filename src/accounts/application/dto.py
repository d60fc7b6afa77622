"""
Accounts Application DTOs
=========================

Pydantic models for the authentication API.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


AuthStatusStr = Literal["authenticated", "mfa_required"]


# ========== Request DTOs ==========

class RegisterRequest(BaseModel):
    """New customer account."""
    username: str = Field(..., min_length=3, max_length=100)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(..., min_length=1, max_length=72, description="bcrypt uses at most 72 bytes")


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)


class LoginMFARequest(BaseModel):
    """Second login step."""
    challenge_id: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., pattern=r"^\d{6}$", description="6-digit TOTP code")


class MFACodeRequest(BaseModel):
    code: str = Field(..., pattern=r"^\d{6}$", description="6-digit TOTP code")


class MFADisableRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)


# ========== Response DTOs ==========

class UserResponse(BaseModel):
    """Public view of a user; never includes hash or secret."""
    id: str
    username: str
    email: str
    role: str
    is_active: bool
    mfa_enabled: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class AuthenticationResponse(BaseModel):
    """
    Outcome of a login step.

    `mfa_required` carries the challenge id for the second step and
    means no session may be issued yet.
    """
    status: AuthStatusStr
    user_id: str
    role: str
    challenge_id: Optional[str] = None
    challenge_expires_at: Optional[datetime] = None


class MFASetupResponse(BaseModel):
    """Secret for manual entry plus the otpauth:// URI for QR rendering."""
    secret: str
    provisioning_uri: str


class MFAStatusResponse(BaseModel):
    mfa_enabled: bool
