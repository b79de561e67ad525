"""
tests/conftest.py -- Shared test fixtures for AuthStarter tests.

This module provides:
  - RecordingEmailSender: EmailSender fake that keeps every message (or fails on demand)
  - FakeClock: controllable clock for OTP expiry tests
  - make_store(): isolated in-memory user database
  - make_user: factory fixture that inserts a user directly, skipping email
  - service fixtures (store, mailer, clock, tokens, auth_service, user_service)
  - client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
store gets a uuid-suffixed name, so every test starts from an empty table.

The environment must be set before any core/auth/api import, because
get_settings() and the rate limiter read it once at import time.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set the environment before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef0123")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef012")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.hashing import BcryptHasher
from auth.models import Role, User
from auth.otp import OtpEngine
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from auth.users import UserService
from core.config import Settings, get_settings
from mailer import SendResult

PASSWORD = "correct-horse-battery"
_CODE_RE = re.compile(r"Your code is: (\d{6})")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentEmail:
    to: str
    subject: str
    html: str
    text: str

    @property
    def code(self) -> str:
        match = _CODE_RE.search(self.text)
        assert match, f"no OTP in email text: {self.text!r}"
        return match.group(1)


class RecordingEmailSender:
    """EmailSender that records messages instead of delivering them.

    Set fail=True to simulate the mail server refusing every message, or
    error to make send() raise it.
    """

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False
        self.error: Exception | None = None

    def send(self, to: str, subject: str, html: str, text: str = "") -> SendResult:
        if self.error is not None:
            raise self.error
        if self.fail:
            return SendResult(success=False, error="550 mailbox unavailable")
        self.sent.append(SentEmail(to=to, subject=subject, html=html, text=text))
        return SendResult(success=True, message_id=f"<{uuid.uuid4().hex}@test>")

    def last_to(self, email: str) -> SentEmail:
        for message in reversed(self.sent):
            if message.to == email:
                return message
        raise AssertionError(f"no email sent to {email}")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store."""
    return UserStore(db_url=f"sqlite:///file:test_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def _seed_user(
    store: UserStore,
    email: str = "ada@example.com",
    role: Role = Role.USER,
    verified: bool = True,
    password: str = PASSWORD,
    first_name: str = "Ada",
    last_name: str = "Lovelace",
) -> User:
    """Insert a user directly, bypassing registration and email."""
    return store.create(
        User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            password=BcryptHasher(rounds=4).hash(password),
            is_verified=verified,
        )
    )


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = make_store()
    yield user_store
    user_store.close()


@pytest.fixture
def mailer() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(settings: Settings) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


@pytest.fixture
def auth_service(
    store: UserStore,
    mailer: RecordingEmailSender,
    clock: FakeClock,
    tokens: TokenIssuer,
    settings: Settings,
) -> AuthService:
    return AuthService(
        store=store,
        hasher=BcryptHasher(rounds=4),
        otp=OtpEngine(store, expire_minutes=settings.otp_expire_minutes, clock=clock),
        tokens=tokens,
        mailer=mailer,
        settings=settings,
    )


@pytest.fixture
def user_service(store: UserStore) -> UserService:
    return UserService(store)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore, mailer: RecordingEmailSender, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, fake mailer and fake clock into app.state so
    TestClient routes never touch a real database or SMTP server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, get_settings(), store, mailer, clock=clock)
        yield

    return test_lifespan


@pytest.fixture
def client(
    store: UserStore,
    mailer: RecordingEmailSender,
    clock: FakeClock,
) -> Generator[TestClient, None, None]:
    """TestClient on the real app with isolated collaborators."""
    app.router.lifespan_context = _patch_lifespan(store, mailer, clock)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def make_user(store: UserStore):
    """Factory fixture: make_user(email=..., role=..., verified=..., password=...) -> User."""

    def factory(**kwargs) -> User:
        return _seed_user(store, **kwargs)

    return factory
