"""
core/errors.py -- Error taxonomy shared by every layer.

Every expected failure is an AppError subclass carrying an HTTP-equivalent
status code, a stable machine-readable code, a human message, and an
error_source list of {path, message} entries pointing at the offending field.

is_operational separates expected, user-facing failures (bad input, auth
failures, a mail server refusing a message) from bugs and infrastructure
faults. The API boundary hides the message of non-operational errors in
production and logs them with a traceback.

Layer rule: core/ is the kernel. No imports from api/, auth/ or mailer/, and
no FastAPI types -- the HTTP mapping lives in api/errors.py.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class ErrorSource:
    """One field-level explanation attached to an error."""

    path: str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


class AppError(Exception):
    """Base class for all errors that cross the API boundary."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error"
    default_path: str = "general"
    is_operational: bool = True

    def __init__(
        self,
        message: str | None = None,
        error_source: list[ErrorSource] | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.error_source = error_source or [ErrorSource(self.default_path, self.message)]

    @classmethod
    def at(cls, path: str, detail: str, message: str | None = None) -> "AppError":
        """Shortcut for the common single-source case."""
        return cls(message, [ErrorSource(path, detail)])

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.code!r}, {self.message!r})"


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class BadRequestError(AppError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request"


class InvalidOrExpiredOtpError(BadRequestError):
    """Merged OTP failure used by the reset flow.

    Does not say whether the email is unknown, the code is wrong, or the code
    has expired.
    """

    code = "invalid_or_expired_otp"
    default_message = "Invalid or expired OTP"
    default_path = "otp"


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"
    default_path = "authorization"


class MissingTokenError(UnauthorizedError):
    code = "missing_token"
    default_message = "Missing Bearer token"


class TokenExpiredError(UnauthorizedError):
    code = "token_expired"
    default_message = "Token expired"


class TokenInvalidError(UnauthorizedError):
    code = "token_invalid"
    default_message = "Invalid token"


class BadCredentialsError(UnauthorizedError):
    code = "bad_credentials"
    default_message = "Invalid credentials"
    default_path = "password"


class EmailNotVerifiedError(UnauthorizedError):
    code = "email_not_verified"
    default_message = "Email not verified"
    default_path = "email"


class InvalidOtpError(UnauthorizedError):
    code = "invalid_otp"
    default_message = "Invalid OTP"
    default_path = "otp"


class OtpExpiredError(UnauthorizedError):
    code = "otp_expired"
    default_message = "OTP has expired"
    default_path = "otp"


# ---------------------------------------------------------------------------
# 403 / 404 / 409 / 422 / 429
# ---------------------------------------------------------------------------


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"
    default_path = "authorization"


class TokenInvalidPurposeError(ForbiddenError):
    code = "token_invalid_purpose"
    default_message = "Invalid token type"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class UnprocessableEntityError(AppError):
    status_code = 422
    code = "validation_error"
    default_message = "Validation failed"
    default_path = "body"


class TooManyRequestsError(AppError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"
    default_path = "rateLimit"


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------


class EmailDeliveryFailedError(AppError):
    """The mail server refused or never received the message.

    Operational: the client may simply try again.
    """

    status_code = 502
    code = "email_delivery_failed"
    default_message = "Email delivery failed. Try again."
    default_path = "email"


class InternalError(AppError):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"
    is_operational = False
