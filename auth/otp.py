"""
auth/otp.py -- One-time codes for email verification and password reset.

The challenge lives on the user row (otp + otp_expires). Issuing a new code
overwrites the previous one, so a user never has more than one active code.

Codes are drawn uniformly from 000000-999999 with the secrets module and
zero-padded, so every code is exactly six digits.

No attempt counting happens here. Brute force against the 10^6 code space
is gated by the rate limiter on the routes that call verify().
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import User
from auth.store import UserStore
from core.errors import InvalidOtpError, NotFoundError, OtpExpiredError

logger = logging.getLogger("authstarter.auth.otp")

OTP_LENGTH = 6


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    return f"{secrets.randbelow(10**OTP_LENGTH):0{OTP_LENGTH}d}"


class OtpEngine:
    """Issues, checks and clears the single OTP challenge of a user.

    Args:
        store:          Where the challenge is persisted.
        expire_minutes: Lifetime of a freshly issued code.
        clock:          Returns the current aware UTC time. Injected so tests
                        can move time without sleeping.
    """

    def __init__(
        self,
        store: UserStore,
        expire_minutes: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.expire_minutes = expire_minutes
        self.clock = clock

    def issue(self, user: User) -> str:
        """Generate a fresh code, persist it with its expiry, and return it."""
        code = generate_code()
        expires = self.clock() + timedelta(minutes=self.expire_minutes)
        if self.store.update_by_id(user.id, otp=code, otp_expires=expires) is None:
            raise NotFoundError("User not found")
        user.otp, user.otp_expires = code, expires
        logger.debug("OTP issued for user_id=%s (expires %s)", user.id, expires.isoformat())
        return code

    def verify(self, user: User, submitted: str) -> None:
        """Raise unless submitted matches the user's active code.

        user must have been loaded with include_secrets=True.

        Raises:
            InvalidOtpError: no active code, or the codes differ.
            OtpExpiredError: the codes match but the expiry has passed.
        """
        if not user.otp or not hmac.compare_digest(user.otp.encode(), submitted.strip().encode()):
            raise InvalidOtpError.at("otp", "The code is incorrect")
        if user.otp_expires is None or self.clock() > user.otp_expires:
            raise OtpExpiredError.at("otp", "The code has expired. Request a new one.")

    def clear(self, user: User) -> None:
        self.store.update_by_id(user.id, otp=None, otp_expires=None)
        user.otp, user.otp_expires = None, None
