"""
api/middleware.py -- Request id propagation and request logging.

Every request gets an id: the incoming X-Request-ID header when the client
(or a proxy) supplied a sane one, else a fresh uuid4 hex. The id is

  - stored in the request_id_var ContextVar for the duration of the request,
  - stamped on every log record by RequestIdFilter,
  - echoed back in the X-Request-ID response header,
  - included as requestId in both success and error envelopes.

A ContextVar (not request.state) is the carrier so that code with no access
to the Request -- log records, the envelope helpers -- can still read it.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from contextvars import ContextVar

from fastapi import Request
from starlette.responses import Response

logger = logging.getLogger("authstarter.api.access")

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Accept client ids that are safe to echo into logs and headers.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def current_request_id() -> str | None:
    return request_id_var.get() or None


class RequestIdFilter(logging.Filter):
    """Add a request_id attribute to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


def _incoming_request_id(request: Request) -> str:
    candidate = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if candidate and _VALID_REQUEST_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


async def request_context_middleware(request: Request, call_next) -> Response:
    """Bind the request id, log the request, and echo the id back."""
    request_id = _incoming_request_id(request)
    token = request_id_var.set(request_id)
    start = time.perf_counter()
    try:
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        request_id_var.reset(token)
