"""
API request and response models for the back office auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PasswordStrength

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No whitespace stripping: leading or trailing spaces are part of a password.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class PasswordStrengthRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-strength."""

    password: str = Field(max_length=255)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    password: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    email: str = Field(min_length=1, max_length=255)
    key: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Identity of the logged-in user."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    is_god: bool


class RightsResponse(BaseModel):
    """Response for GET /api/v1/auth/rights.

    modules lists every module the caller may open; actions maps module to
    {action: level}. God users and anonymous callers get empty rights maps;
    is_god tells clients to treat every installed module as open.
    """

    model_config = ConfigDict(frozen=True)

    logged_in: bool
    is_god: bool = False
    modules: list[str] = Field(default_factory=list)
    actions: dict[str, dict[str, int]] = Field(default_factory=dict)


class AccessResponse(BaseModel):
    """Response for GET /api/v1/auth/access."""

    model_config = ConfigDict(frozen=True)

    module: str
    action: Optional[str] = None
    allowed: bool


class PasswordStrengthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    strength: PasswordStrength


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


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

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
