"""
api/metrics.py -- Prometheus metrics for the HTTP layer.

Metrics live in a private CollectorRegistry instead of the process-global
default one, so re-importing this module (test reloads, multiple app
instances in one process) never trips "Duplicated timeseries".

  http_requests_total            counter    method, route, status
  http_request_duration_seconds  histogram  method, route, status
  http_errors_total              counter    method, route, status (>= 400 only)
  http_requests_in_flight        gauge      method

route is the matched route template ("/api/v1/user/me"), never the raw
path, to keep label cardinality bounded. Unmatched requests share the
"unmatched" label.
"""

from __future__ import annotations

import time

from fastapi import Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.responses import Response

registry = CollectorRegistry(auto_describe=True)

REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
    registry=registry,
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "route", "status"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry,
)

ERRORS_TOTAL = Counter(
    "http_errors_total",
    "HTTP responses with status >= 400",
    ["method", "route", "status"],
    registry=registry,
)

IN_FLIGHT = Gauge(
    "http_requests_in_flight",
    "HTTP requests currently being processed",
    ["method"],
    registry=registry,
)


def route_label(request: Request) -> str:
    """Return the matched route template, or "unmatched"."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


def record_request(method: str, route: str, status_code: int, seconds: float) -> None:
    status = str(status_code)
    REQUESTS_TOTAL.labels(method=method, route=route, status=status).inc()
    REQUEST_DURATION.labels(method=method, route=route, status=status).observe(seconds)
    if status_code >= 400:
        ERRORS_TOTAL.labels(method=method, route=route, status=status).inc()


async def metrics_middleware(request: Request, call_next) -> Response:
    """Time every request and record it once the response is ready.

    The route scope key is only populated after routing, so the label is
    read after call_next returns.
    """
    method = request.method
    gauge = IN_FLIGHT.labels(method=method)
    gauge.inc()
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        gauge.dec()
        record_request(method, route_label(request), status_code, time.perf_counter() - start)


def metrics_response() -> Response:
    """Render the registry in the Prometheus text exposition format."""
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
