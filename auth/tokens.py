"""
auth/tokens.py -- JWT issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Three token classes, each with its own secret
       and lifetime:
         access  -- {user_id, email, role}, short-lived, JWT_ACCESS_SECRET
         refresh -- {user_id, email, role}, long-lived, JWT_REFRESH_SECRET
         reset   -- {email, role, purpose="password_reset"}, 15 minutes,
                    RESET_TOKEN_SECRET (or the access secret when unset)

  Verification raises instead of returning None so the caller can tell an
  expired token (TokenExpiredError) from any other failure
  (TokenInvalidError). Both are 401s at the boundary.

  Reset tokens are additionally checked for purpose == "password_reset".
  A valid access token presented as a reset token is rejected with
  TokenInvalidPurposeError (403) even when the reset secret is distinct:
  the signature is re-checked against the access secret so the caller gets
  the precise error.

  Secrets are validated once at startup (core.config). TokenIssuer refuses
  to be constructed with an empty secret, so signing never fails
  per-request.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import ResetClaims, Role, TokenClaims, TokenMeta
from core.config import Settings
from core.errors import TokenExpiredError, TokenInvalidError, TokenInvalidPurposeError

logger = logging.getLogger("authstarter.auth.tokens")

_ALGORITHM = "HS256"

RESET_PURPOSE = "password_reset"

# Every token we issue carries exp; a token without one is rejected.
_DECODE_OPTIONS = {"require_exp": True}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp_to_datetime(value) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


class TokenIssuer:
    """Signs and verifies access, refresh and reset tokens.

    Construct once at startup (see TokenIssuer.from_settings) and share.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        reset_secret: str | None = None,
        access_expire_seconds: int = 3600,
        refresh_expire_seconds: int = 365 * 24 * 3600,
        reset_expire_seconds: int = 15 * 60,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("Access and refresh signing secrets are required")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._reset_secret = reset_secret or access_secret
        self.access_expire_seconds = access_expire_seconds
        self.refresh_expire_seconds = refresh_expire_seconds
        self.reset_expire_seconds = reset_expire_seconds
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            reset_secret=settings.effective_reset_secret,
            access_expire_seconds=settings.access_token_expire_seconds,
            refresh_expire_seconds=settings.refresh_token_expire_seconds,
            reset_expire_seconds=settings.reset_token_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, claims: TokenClaims) -> str:
        return self._sign(self._identity_payload(claims), self._access_secret, self.access_expire_seconds)

    def issue_refresh_token(self, claims: TokenClaims) -> str:
        return self._sign(self._identity_payload(claims), self._refresh_secret, self.refresh_expire_seconds)

    def issue_reset_token(self, email: str, role: Role) -> str:
        payload = {"email": email, "role": Role(role).value, "purpose": RESET_PURPOSE}
        return self._sign(payload, self._reset_secret, self.reset_expire_seconds)

    def token_meta(self) -> TokenMeta:
        return TokenMeta(
            token_type="Bearer",
            expires_in=self.access_expire_seconds,
            refresh_expires_in=self.refresh_expire_seconds,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> TokenClaims:
        """Return the identity in an access token.

        Raises:
            TokenExpiredError: exp has passed.
            TokenInvalidError: bad signature, malformed token, missing claims.
        """
        return self._identity_claims(self._decode(token, self._access_secret))

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._identity_claims(self._decode(token, self._refresh_secret))

    def verify_reset_token(self, token: str) -> ResetClaims:
        """Return the claims of a password-reset token.

        Raises:
            TokenExpiredError:        exp has passed.
            TokenInvalidError:        bad signature, malformed token, missing claims.
            TokenInvalidPurposeError: a valid token that is not a reset token.
        """
        try:
            payload = self._decode(token, self._reset_secret)
        except TokenInvalidError:
            if self._reset_secret != self._access_secret and self._is_access_token(token):
                raise TokenInvalidPurposeError.at("authorization", "Token is not a password reset token") from None
            raise

        if payload.get("purpose") != RESET_PURPOSE:
            raise TokenInvalidPurposeError.at("authorization", "Token is not a password reset token")

        email = payload.get("email")
        role = Role.parse(payload.get("role"))
        if not isinstance(email, str) or not email or role is None:
            raise TokenInvalidError.at("authorization", "Token payload is invalid")
        return ResetClaims(email=email, role=role, expires_at=_timestamp_to_datetime(payload.get("exp")))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _identity_payload(claims: TokenClaims) -> dict:
        return {"user_id": claims.user_id, "email": claims.email, "role": Role(claims.role).value}

    def _sign(self, payload: dict, secret: str, expire_seconds: int) -> str:
        now = self.clock()
        to_encode = dict(payload)
        to_encode.update({"iat": now, "exp": now + timedelta(seconds=expire_seconds)})
        return jwt.encode(to_encode, secret, algorithm=_ALGORITHM)

    @staticmethod
    def _decode(token: str, secret: str) -> dict:
        try:
            return jwt.decode(token, secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except ExpiredSignatureError as exc:
            raise TokenExpiredError.at("authorization", "Please login again") from exc
        except JWTError as exc:
            raise TokenInvalidError.at("authorization", "Token is invalid") from exc

    def _is_access_token(self, token: str) -> bool:
        try:
            jwt.decode(token, self._access_secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError:
            return False
        return True

    @staticmethod
    def _identity_claims(payload: dict) -> TokenClaims:
        user_id = payload.get("user_id")
        email = payload.get("email")
        role = Role.parse(payload.get("role"))
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(email, str) or role is None:
            raise TokenInvalidError.at("authorization", "Missing/invalid user_id, email or role in token")
        return TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            issued_at=_timestamp_to_datetime(payload.get("iat")),
            expires_at=_timestamp_to_datetime(payload.get("exp")),
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

REFRESH_COOKIE = "refreshToken"
ACCESS_COOKIE = "accessToken"


def set_refresh_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    secure=True (production): cookie is sent cross-site with samesite="none",
        which browsers only accept over HTTPS.
    secure=False (local dev): samesite="lax" so plain-HTTP localhost works.
    max_age: matches the refresh token expiry so both expire together.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="none" if secure else "lax",
        secure=secure,
        max_age=max_age,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(REFRESH_COOKIE)
