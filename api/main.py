"""
api/main.py -- FastAPI application entry point for AuthStarter.

Exposes registration, email verification, login and password reset over
HTTP, plus profile routes and operational endpoints (/health, /metrics).

Install deps:  pip install -e .
Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. request_context_middleware -- binds X-Request-ID, logs every request
  2. metrics_middleware         -- Prometheus request counters and latency
  3. TrustedHostMiddleware      -- rejects requests with unexpected Host headers
  4. CORSMiddleware             -- adds CORS headers for allowed browser origins
  5. SlowAPIMiddleware          -- default and per-route rate limits from api.limiter

Lifespan builds the store and every service once and hangs them on
app.state; route handlers read them from there. Tests replace the lifespan
and call wire_services() with in-memory stores and a fake email sender.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.errors import install_exception_handlers
from api.limiter import limiter
from api.metrics import metrics_middleware, metrics_response
from api.middleware import RequestIdFilter, request_context_middleware
from api.models import ErrorEnvelope, HealthResponse
from api.responses import send_response
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.hashing import BcryptHasher
from auth.otp import OtpEngine, utc_now
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from auth.users import UserService
from core.config import Settings, get_settings
from mailer import EmailSender, SmtpEmailSender

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s [%(request_id)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger("authstarter.api")

VERSION = "1.0.0"

# OpenAPI only: every failure is rendered as an ErrorEnvelope by api/errors.py.
_ERROR_RESPONSES: dict = {status: {"model": ErrorEnvelope} for status in (400, 401, 403, 404, 409, 422, 429, 500)}


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    settings: Settings,
    store: UserStore,
    mailer: EmailSender,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    """Build every service from its collaborators and attach it to app.state.

    The only place the object graph is assembled. The lifespan calls it with
    production collaborators; tests call it with in-memory ones.
    """
    tokens = TokenIssuer.from_settings(settings)
    otp = OtpEngine(store, expire_minutes=settings.otp_expire_minutes, clock=clock)
    app.state.settings = settings
    app.state.user_store = store
    app.state.tokens = tokens
    app.state.auth_service = AuthService(
        store=store,
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
        otp=otp,
        tokens=tokens,
        mailer=mailer,
        settings=settings,
    )
    app.state.user_service = UserService(store)
    app.state.started_at = time.monotonic()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the database and build the services; close the database on shutdown."""
    logger.info("AuthStarter API starting up (environment=%s)", settings.environment)
    store = UserStore(db_url=settings.database_url)
    wire_services(app, settings, store, SmtpEmailSender(settings))
    logger.info("Services initialized")

    yield

    store.close()
    logger.info("AuthStarter API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_docs = settings.docs_enabled and not settings.is_production

app = FastAPI(
    title=f"{settings.app_name} API",
    description="Email/password authentication with OTP email verification, JWT sessions and password reset.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _docs else None,
    redoc_url="/redoc" if _docs else None,
    openapi_url="/openapi.json" if _docs else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() / @app.middleware() call wraps everything registered
# before it, so the LAST one registered is the OUTERMOST. Registration order
# here is therefore innermost-first: SlowAPI -> CORS -> TrustedHost ->
# metrics -> request context.
# ---------------------------------------------------------------------------

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Retry-After"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.middleware("http")(metrics_middleware)
app.middleware("http")(request_context_middleware)

install_exception_handlers(app)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"], responses=_ERROR_RESPONSES)
app.include_router(users_router, prefix="/api/v1", tags=["User"], responses=_ERROR_RESPONSES)


# ---------------------------------------------------------------------------
# Operational endpoints
#
# Defined directly in main.py (not in a router) so they are always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/", tags=["System"])
def root() -> JSONResponse:
    """Confirm the API is up."""
    return send_response(200, "OK", {"name": settings.app_name, "version": VERSION})


@app.get("/api/v1/health", tags=["System"])
@limiter.exempt
def health(request: Request) -> JSONResponse:
    """Return liveness, uptime and database reachability.

    Always 200 while the process is serving; a failed database ping is
    reported as database="unavailable" with status="degraded".
    """
    store: UserStore = request.app.state.user_store
    try:
        database = "ok" if store.ping() else "unavailable"
    except SQLAlchemyError:
        logger.warning("Health check: database ping failed", exc_info=True)
        database = "unavailable"

    data = HealthResponse(
        status="ok" if database == "ok" else "degraded",
        uptime_seconds=round(time.monotonic() - request.app.state.started_at, 3),
        timestamp=datetime.now(timezone.utc),
        database=database,
    )
    return send_response(200, "OK", data)


@app.get("/metrics", include_in_schema=False)
@limiter.exempt
def metrics(request: Request) -> Response:
    """Prometheus scrape endpoint. Exempt from rate limiting."""
    return metrics_response()
