"""
API request and response models for Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password strength is NOT validated here. PasswordPolicy in the core owns that
rule so it answers with the core's ValidationError (400) rather than a
transport-level 422. Models only cap lengths and coerce types.

Request bodies accept the camelCase keys existing clients send
(firstName, currentPassword, ...) as well as snake_case.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AccountProfile, ResolvedIdentity, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    Identity fields are stripped of surrounding whitespace. The password is
    passed through untouched: whitespace is part of the secret.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(max_length=255)
    email: str = Field(max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=100, alias="firstName")
    last_name: Optional[str] = Field(default=None, max_length=100, alias="lastName")
    password: str = Field(max_length=255, json_schema_extra={"format": "password"})
    age: Optional[int] = Field(default=None, ge=0, le=200)

    @field_validator("username", "email", "first_name", "last_name", mode="before")
    @classmethod
    def strip_identity_fields(cls, value):
        return value.strip() if isinstance(value, str) else value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(max_length=255, alias="currentPassword")
    new_password: str = Field(max_length=255, alias="newPassword")


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{account_id}. Admin only."""

    model_config = ConfigDict(populate_by_name=True)

    role: Optional[Role] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public account representation. Has no password field by construction."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile: AccountProfile) -> "AccountResponse":
        return cls(
            id=profile.id,
            username=profile.username,
            email=profile.email,
            role=profile.role,
            first_name=profile.first_name,
            last_name=profile.last_name,
            age=profile.age,
            is_active=profile.is_active,
            last_login=profile.last_login,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class AuthResponse(BaseModel):
    """Response for POST /signup and POST /login."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class IdentityResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the identity AccessGate resolved."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    username: str
    email: str
    role: Role

    @classmethod
    def from_identity(cls, identity: ResolvedIdentity) -> "IdentityResponse":
        return cls(
            account_id=identity.account_id,
            username=identity.username,
            email=identity.email,
            role=identity.role,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error code plus a caller-safe message."""

    code: str
    message: str
    field: Optional[str] = None
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope: {"error": {"code", "message", ...}}."""

    error: ErrorDetail
