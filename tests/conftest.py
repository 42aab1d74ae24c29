"""
tests/conftest.py -- Shared test fixtures for BlogAuth unit and integration tests.

This module provides:
  - FakeClock / FakeMailer: controllable time and a recording reset mailer
  - store / service: a fresh in-memory UserStore and SessionService per test
  - registered_user: one account created through the service
  - api_env: TestClient over the real FastAPI app with a patched lifespan that
    injects a test SessionService whose store is wrapped in a call-recording spy

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Every store gets a unique name so tests never see each other's rows.

DEBUG must be set before any auth/core import so get_settings() auto-generates
SECRET_KEY in dev mode rather than raising ValueError. BCRYPT_ROUNDS=4 keeps
hashing fast; the work factor does not change behavior.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.passwords import BcryptHasher
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test calls advance()."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentReset:
    to_email: str
    token: str
    user_name: str


@dataclass
class FakeMailer:
    """Records reset emails instead of sending them. Set fail=True to simulate an SMTP outage."""

    sent: list[SentReset] = field(default_factory=list)
    fail: bool = False

    def send_password_reset(self, to_email: str, token: str, user_name: str) -> None:
        if self.fail:
            raise ConnectionRefusedError("smtp down")
        self.sent.append(SentReset(to_email, token, user_name))


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_db_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(db_url=_memory_db_url("test_auth"))
    yield s
    s.close()


@pytest.fixture
def service(store: UserStore, hasher: BcryptHasher, codec: TokenCodec, mailer: FakeMailer) -> SessionService:
    return SessionService(store, hasher, codec, mailer, settings=get_settings())


@pytest.fixture
def registered_user(service: SessionService, store: UserStore) -> SimpleNamespace:
    """Register Ada through the service and return her credentials and id."""
    service.register_user("Ada Lovelace", "ada@example.com", "15550000000", "correct-horse")
    user = store.find_by_email_or_phone(email="ada@example.com")
    return SimpleNamespace(
        id=user.id,
        name="Ada Lovelace",
        email="ada@example.com",
        phone="15550000000",
        password="correct-horse",
    )


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store, service: SessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and service into app.state so routes see isolated
    in-memory DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.session_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_env(hasher: BcryptHasher, mailer: FakeMailer) -> Generator[SimpleNamespace, None, None]:
    """Yield client, service, spy store, real store and mailer for HTTP tests.

    The limiter's in-memory counters are module-global, so they are reset
    before each test -- otherwise login attempts from one test would count
    against the next.
    """
    store = UserStore(db_url=_memory_db_url("test_api"))
    spy = MagicMock(wraps=store)
    codec = TokenCodec(get_settings().secret_key)
    service = SessionService(spy, hasher, codec, mailer, settings=get_settings())
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(spy, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield SimpleNamespace(client=client, service=service, spy=spy, store=store, codec=codec, mailer=mailer)

    limiter.reset()
    store.close()

