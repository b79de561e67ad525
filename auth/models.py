"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Enumerated user roles. The value is what goes into tokens and the DB."""

    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    OWNER = "OWNER"

    @classmethod
    def parse(cls, value: object) -> "Role | None":
        """Return the Role for a raw claim/column value, or None if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


# Roles allowed to list and manage other users.
STAFF_ROLES: tuple[Role, ...] = (Role.ADMIN, Role.SUPER_ADMIN, Role.OWNER)


@dataclass
class User:
    """A registered account, keyed by its unique email.

    password, otp and otp_expires are only populated when the store is asked
    for them explicitly (include_secrets=True). Default reads leave them None
    so they cannot leak into a response by accident.

    otp and otp_expires are written and cleared together: either both are
    set (an active challenge) or both are None.
    """

    email: str
    first_name: str
    last_name: str
    role: Role = Role.USER
    id: int | None = None
    password: str | None = None  # bcrypt hash
    is_verified: bool = False
    otp: str | None = None
    otp_expires: datetime | None = None
    avatar: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def public(self) -> "PublicUser":
        return PublicUser(
            id=self.id,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            role=self.role,
            avatar=self.avatar,
            is_verified=self.is_verified,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class PublicUser:
    """Sanitized projection of a User. Never carries password or OTP state."""

    id: int | None
    first_name: str
    last_name: str
    email: str
    role: Role
    avatar: str | None = None
    is_verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by access and refresh tokens."""

    user_id: int
    email: str
    role: Role
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ResetClaims:
    """Identity carried by a password-reset token."""

    email: str
    role: Role
    expires_at: datetime | None = None


@dataclass(frozen=True)
class TokenMeta:
    token_type: str
    expires_in: int
    refresh_expires_in: int


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    meta: TokenMeta
    user: PublicUser


@dataclass(frozen=True)
class AccessResult:
    access_token: str
    meta: TokenMeta


@dataclass(frozen=True)
class AuthContext:
    """Resolved identity of an authenticated request.

    Produced by the access guard and handed to route handlers explicitly,
    instead of being attached to the request object.
    """

    user_id: int
    email: str
    role: Role
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class Page:
    """One page of a listing plus the numbers needed to render pagination."""

    items: list = field(default_factory=list)
    page: int = 1
    limit: int = 10
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
