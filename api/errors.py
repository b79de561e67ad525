"""
api/errors.py -- Boundary error normalization.

All handlers return the same error envelope so API clients can parse errors
uniformly without inspecting status codes to choose a schema:

    {
      "success": false,
      "code": "validation_error",
      "message": "Validation failed",
      "errorSource": [{"path": "email", "message": "value is not a valid email address"}],
      "requestId": "...",     # when a request id is bound
      "stack": "..."          # development and test only
    }

Normalization:
  AppError                  -> its own status, code, message and errorSource
  RequestValidationError    -> 422 validation_error, one errorSource per issue
  RateLimitExceeded         -> 429 rate_limited with Retry-After
  StarletteHTTPException    -> same status; unknown route / wrong method
  IntegrityError            -> 409 conflict
  anything else             -> 500 internal_error (non-operational)

Security notes:
  Non-operational errors are logged with their traceback. In production their
  message is replaced with "Something went wrong" and the stack is never
  included, so internals do not leak to clients.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Sequence
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.middleware import current_request_id
from core.config import get_settings
from core.errors import (
    AppError,
    ConflictError,
    ErrorSource,
    InternalError,
    NotFoundError,
    TooManyRequestsError,
    UnprocessableEntityError,
)

logger = logging.getLogger("authstarter.api.errors")

GENERIC_MESSAGE = "Something went wrong"

# First element of a FastAPI error location names where the value came from.
_LOCATION_PREFIXES = frozenset({"body", "query", "path", "header", "cookie"})


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_payload(error: AppError, exc: BaseException | None = None) -> dict[str, Any]:
    """Build the error envelope body for an AppError.

    exc is the exception whose traceback goes into "stack" (the original one
    when error wraps an unexpected exception).
    """
    settings = get_settings()
    message = error.message
    sources = [s.to_dict() for s in error.error_source]
    if settings.is_production and not error.is_operational:
        message = GENERIC_MESSAGE
        sources = [ErrorSource("general", GENERIC_MESSAGE).to_dict()]

    body: dict[str, Any] = {
        "success": False,
        "code": error.code,
        "message": message,
        "errorSource": sources,
    }
    request_id = current_request_id()
    if request_id:
        body["requestId"] = request_id
    if not settings.is_production:
        body["stack"] = _format_stack(exc or error)
    return body


def error_response(error: AppError, exc: BaseException | None = None) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error_payload(error, exc))


def _issue_path(loc: Sequence[Any]) -> str:
    parts = list(loc)
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(str(p) for p in parts) or "body"


def _issue_message(issue: dict) -> str:
    # Custom validators surface as "Value error, <msg>"; clients only need <msg>.
    message = str(issue.get("msg", "Invalid value"))
    return message.removeprefix("Value error, ")


def validation_sources(issues: Sequence[dict]) -> list[ErrorSource]:
    """Map pydantic/FastAPI validation issues to ErrorSource entries."""
    return [ErrorSource(_issue_path(issue.get("loc", ())), _issue_message(issue)) for issue in issues]


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if not exc.is_operational:
        logger.error(
            "Non-operational error on %s %s: %r",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
    elif exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.debug("%s on %s %s", exc.code, request.method, request.url.path)
    return error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one errorSource entry per failed field."""
    error = UnprocessableEntityError("Validation failed", validation_sources(exc.errors()))
    return error_response(error, exc)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    error = TooManyRequestsError.at(
        "rateLimit",
        f"Rate limit exceeded: {exc.detail}",
        "Too many requests, please try again later.",
    )
    response = error_response(error, exc)
    response.headers["Retry-After"] = str(retry_after)
    return response


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the envelope for routing errors (404 unknown route, 405 wrong method)."""
    if exc.status_code == 404:
        message = f"Route not found: {request.method} {request.url.path}"
        error: AppError = NotFoundError.at("route", message, message)
    else:
        error = AppError.at("route", str(exc.detail), str(exc.detail))
        error.status_code = exc.status_code
        error.code = f"http_{exc.status_code}"
    response = error_response(error, exc)
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Constraint violations the service layer did not anticipate become 409."""
    logger.warning("Integrity error on %s %s", request.method, request.url.path)
    return error_response(ConflictError.at("general", "Duplicate or conflicting value"), exc)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    error = InternalError(str(exc) or InternalError.default_message)
    return error_response(error, exc)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
