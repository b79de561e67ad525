"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token sources, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "accessToken" cookie -- browser clients.

require_auth(*roles) builds a dependency that verifies the access token and
returns an AuthContext. The context is handed to the route as a parameter;
nothing is attached to the request object.

  require_auth()                          -- any authenticated identity
  require_auth(Role.ADMIN, Role.OWNER)    -- only those roles

Failure mapping (all raised as core.errors types, rendered by api/errors.py):
  no token           -> MissingTokenError  401
  expired token      -> TokenExpiredError  401
  any other failure  -> TokenInvalidError  401
  role not allowed   -> ForbiddenError     403

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import AuthContext, Role
from auth.tokens import ACCESS_COOKIE, TokenIssuer
from core.errors import ForbiddenError, MissingTokenError


def _bearer_from_header(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def extract_token(request: Request) -> str | None:
    """Return the access token from the Bearer header, else the cookie, else None."""
    token = _bearer_from_header(request)
    if token:
        return token
    cookie = request.cookies.get(ACCESS_COOKIE)
    return cookie or None


def bearer_token(request: Request) -> str:
    """Require a Bearer token in the Authorization header (no cookie fallback).

    Used by the password-reset route, where the token is a reset token and
    must never be picked up from a session cookie.
    """
    token = _bearer_from_header(request)
    if token is None:
        raise MissingTokenError.at("authorization", "Missing or malformed Authorization header")
    return token


def require_auth(*roles: Role) -> Callable[[Request], AuthContext]:
    """Build a dependency that authenticates the request and checks its role.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(ctx: AuthContext = Depends(require_auth(Role.ADMIN))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> AuthContext:
        token = extract_token(request)
        if not token:
            raise MissingTokenError.at("authorization", "Missing Bearer token")

        tokens: TokenIssuer = request.app.state.tokens
        claims = tokens.verify_access_token(token)

        if allowed and claims.role not in allowed:
            raise ForbiddenError.at("authorization", "Insufficient permissions")

        return AuthContext(
            user_id=claims.user_id,
            email=claims.email,
            role=claims.role,
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
        )

    return dependency
