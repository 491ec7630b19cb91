"""
tests/conftest.py -- Shared fixtures for Gatehouse unit and integration tests.

This module provides:
  - FakeClock: a settable UTC clock injected into every engine component, so
    expiry tests move time instead of sleeping
  - settings / store / facade and friends: engine components over an
    in-memory SQLite store, with cheap argon2 parameters
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG and the host allow-list must be set before any api/ import, because
api/main.py reads Settings at import time to configure middleware.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")

import pytest
from fastapi.testclient import TestClient

from auth.facade import AuthFacade, build_auth_facade
from auth.models import User
from auth.otp import OtpTokenStore
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import Settings

PASSWORD = "correct horse battery"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "argon2_time_cost": 1,
        "argon2_memory_cost": 1024,
        "argon2_parallelism": 1,
        "access_token_ttl_seconds": 60,
        "refresh_token_ttl_seconds": 3600,
        "otp_ttl_seconds": 600,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher(settings: Settings) -> PasswordHasher:
    return PasswordHasher(settings)


@pytest.fixture
def codec(settings: Settings, clock: FakeClock) -> TokenCodec:
    return TokenCodec(settings, clock=clock)


@pytest.fixture
def otp(store: UserStore, settings: Settings, clock: FakeClock) -> OtpTokenStore:
    return OtpTokenStore(store, settings, clock=clock)


@pytest.fixture
def sessions(
    store: UserStore, hasher: PasswordHasher, codec: TokenCodec, settings: Settings, clock: FakeClock
) -> SessionManager:
    return SessionManager(store, hasher, codec, settings, clock=clock)


@pytest.fixture
def facade(store: UserStore, settings: Settings, clock: FakeClock) -> AuthFacade:
    return build_auth_facade(settings, store, clock=clock)


@pytest.fixture
def user(store: UserStore, hasher: PasswordHasher) -> User:
    """A verified-password user: a@example.com / PASSWORD."""
    user_id = store.create_user(
        User(email="a@example.com", first_name="Ada", last_name="Lovelace", hashed_password=hasher.hash(PASSWORD))
    )
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: UserStore, auth: AuthFacade):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test store and facade into app.state so routes see an
    isolated database and a controllable clock.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = store
        app.state.auth = auth
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, UserStore, FakeClock], None, None]:
    """Yield (client, store, clock) for API integration tests.

    The store is a fresh named in-memory DB per test. Rate limiting is
    switched off so repeated logins across tests are not throttled.
    """
    from api.limiter import limiter
    from api.main import app

    settings = make_settings()
    clock = FakeClock()
    store = UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    auth = build_auth_facade(settings, store, clock=clock)

    limiter.enabled = False
    app.router.lifespan_context = _patch_lifespan(settings, store, auth)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, clock

    limiter.enabled = True
    store.close()
