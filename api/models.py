"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Tenant, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, something on each side, no whitespace. Real
# validation is the verification email.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    password is not stripped -- leading/trailing spaces are part of it.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/password/reset.

    user_id and token both come from the reset email.
    """

    user_id: str = Field(min_length=1, max_length=36)
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=255)


class SwitchTenantRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=36)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login.

    Tokens are returned in the body as well as placed in the session cookie;
    API clients use refresh_token with POST /auth/refresh.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class CheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    """Identity information for the authenticated user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    display_name: str
    email_verified: bool
    active_tenant_id: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "MeResponse":
        return cls(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            email_verified=user.email_verified,
            active_tenant_id=user.active_tenant_id,
            last_login=user.last_login,
        )


class TenantResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    active: bool = False

    @classmethod
    def from_tenant(cls, tenant: Tenant, active_id: Optional[str]) -> "TenantResponse":
        return cls(id=tenant.id, name=tenant.name, active=tenant.id == active_id)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
