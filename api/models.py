"""
API request and response models for AuthStarter REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, newPassword, accessToken). Every model
derives from _CamelModel, which generates the aliases and still accepts the
snake_case field names.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from auth.models import AccessResult, LoginResult, PublicUser, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OTP_PATTERN = r"^\d{6}$"
MIN_PASSWORD_LENGTH = 8
# bcrypt only looks at the first 72 bytes; 128 chars bounds hashing cost.
MAX_PASSWORD_LENGTH = 128


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


# Names, emails and codes are trimmed. Passwords are taken byte for byte:
# the hash must match exactly what the user typed.
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]
_Email = Annotated[EmailStr, BeforeValidator(_strip)]
_Password = Annotated[str, Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)]
_Otp = Annotated[
    str, StringConstraints(strip_whitespace=True, pattern=OTP_PATTERN), Field(description="6-digit one-time code")
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register."""

    first_name: _Name
    last_name: _Name
    email: _Email
    password: _Password
    avatar: Optional[AnyHttpUrl] = None


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login.

    No minimum length beyond "non-empty": login must not reveal the password
    policy of the day an account was created.
    """

    email: _Email
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class OtpRequest(_CamelModel):
    """Request body for POST /auth/verify-email and POST /auth/verify-otp."""

    email: _Email
    otp: _Otp


class EmailRequest(_CamelModel):
    """Request body for POST /auth/forgot-password and POST /auth/resend-otp."""

    email: _Email


class RefreshRequest(_CamelModel):
    """Optional body for POST /auth/refresh-token. The refreshToken cookie wins."""

    refresh_token: Optional[Annotated[str, StringConstraints(strip_whitespace=True)]] = None


class ResetPasswordRequest(_CamelModel):
    """Request body for POST /api/v1/auth/reset-password.

    The reset token itself travels in the Authorization header.
    """

    new_password: _Password
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        # new_password is absent from info.data when it failed its own checks.
        new_password = info.data.get("new_password")
        if new_password is not None and value != new_password:
            raise ValueError("Passwords do not match")
        return value


class UpdateProfileRequest(_CamelModel):
    """Request body for PATCH /api/v1/user/me.

    Strict: any key other than firstName, lastName or avatar is rejected,
    so clients cannot try to set role, email or isVerified through it.
    """

    model_config = ConfigDict(extra="forbid")

    first_name: Optional[_Name] = None
    last_name: Optional[_Name] = None
    avatar: Optional[AnyHttpUrl] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: Role
    avatar: Optional[str] = None
    is_verified: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            role=user.role,
            avatar=user.avatar,
            is_verified=user.is_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AccessTokenResponse(_CamelModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_domain(cls, result: AccessResult) -> "AccessTokenResponse":
        return cls(
            access_token=result.access_token,
            token_type=result.meta.token_type,
            expires_in=result.meta.expires_in,
        )


class LoginResponse(_CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_expires_in: int
    user: UserResponse

    @classmethod
    def from_domain(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.meta.token_type,
            expires_in=result.meta.expires_in,
            refresh_expires_in=result.meta.refresh_expires_in,
            user=UserResponse.from_domain(result.user),
        )


class ResetTokenResponse(_CamelModel):
    reset_token: str


class PageMeta(_CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class HealthResponse(_CamelModel):
    status: str
    uptime_seconds: float
    timestamp: datetime
    database: str


# ---------------------------------------------------------------------------
# Error envelope (OpenAPI only; api/errors.py builds the real body)
# ---------------------------------------------------------------------------


class ErrorSourceModel(BaseModel):
    path: str
    message: str


class ErrorEnvelope(_CamelModel):
    success: bool = False
    code: str
    message: str
    error_source: list[ErrorSourceModel]
    request_id: Optional[str] = None
    stack: Optional[str] = None
