"""
API request and response models for shopgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two,
and to_user_response() is the only place a User leaves the service boundary.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Role, User
from storage.avatars import avatar_filename

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
AVATAR_PROXY_PATH = "/api/v1/images/private/avatars"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT_OR_SPECIAL = re.compile(r"[\d\W_]")


def _check_password_strength(value: str) -> str:
    """Require an upper-case letter, a lower-case letter, and a digit or special character."""
    if not (_UPPER.search(value) and _LOWER.search(value) and _DIGIT_OR_SPECIAL.search(value)):
        raise ValueError(
            "Password must contain an upper-case letter, a lower-case letter, and a digit or special character."
        )
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The password is not strength-checked here: login must answer every wrong
    password with the same generic error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    role is accepted so that older clients sending it do not fail validation,
    but it is never read: public registration always creates a USER.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=8, max_length=128)
    role: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)
    new_password: str = Field(min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. Admin only; may assign ADMIN."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=8, max_length=128)
    role: Role = Role.USER

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. All fields optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public projection of a user. Never carries credential or storage-key fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    is_oauth_user: bool
    avatar_url: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


class AuthResponse(BaseModel):
    """Response for login, register and refresh.

    Tokens are also set as httpOnly cookies; the body copy serves clients
    that send them back as Authorization: Bearer instead.
    """

    model_config = ConfigDict(frozen=True)

    user: Optional[UserResponse] = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class GrantResponse(BaseModel):
    """Time-bounded URL for a private asset."""

    model_config = ConfigDict(frozen=True)

    url: str
    expires_in: int


class CatalogUploadResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    url: str


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


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def avatar_url_for(user: User) -> Optional[str]:
    """Client-facing avatar locator.

    A private avatar is exposed only as the authenticated proxy path, never as
    its storage key or a bucket URL. Otherwise the provider picture, if any.
    """
    if user.avatar_key:
        return f"{AVATAR_PROXY_PATH}/{avatar_filename(user.avatar_key)}"
    return user.avatar_url


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        is_active=user.is_active,
        is_oauth_user=user.is_oauth_user,
        avatar_url=avatar_url_for(user),
        created_at=user.created_at or "",
        updated_at=user.updated_at or "",
    )
