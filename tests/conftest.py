"""
tests/conftest.py -- Shared test fixtures for shopgate unit and integration tests.

This module provides:
  - user_store / session_manager: isolated file-backed SQLite store per test
  - tokens / settings: the cached Settings and a TokenService over it
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api: TestClient over the real app with an admin, a mocked S3 client and a
    mocked email queue

Design: each store is a SQLite file under pytest's tmp_path, not an in-memory
database. TestClient runs sync route handlers in a thread pool and several
tests race writers on purpose; a file database with WAL and a busy timeout
lets those writers queue instead of failing on shared-cache table locks.

DEBUG and BCRYPT_ROUNDS must be set before any project import so
get_settings() auto-generates secrets and hashing stays fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import so get_settings() can
# auto-generate secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Role
from auth.ratelimit import LoginRateLimiter
from auth.session import SessionManager
from auth.store import UserStore
from auth.tokens import TokenKind, TokenService
from core.config import get_settings
from storage.broker import AssetBroker
from tests.factories import make_broker, make_user

ADMIN_EMAIL = "admin@shop.test"
ADMIN_PASSWORD = "AdminPass1!"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def user_store(tmp_path) -> Generator[UserStore, None, None]:
    store = UserStore(f"sqlite:///{tmp_path / 'users.db'}")
    yield store
    store.close()


@pytest.fixture
def email_queue() -> MagicMock:
    return MagicMock()


@pytest.fixture
def tokens(settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def session_manager(user_store, tokens, email_queue, settings) -> SessionManager:
    return SessionManager(user_store, tokens, email_queue, settings)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    store: UserStore
    email_queue: MagicMock
    s3: MagicMock
    oauth: MagicMock
    tokens: TokenService
    admin_id: int

    def token_for(self, user_id: int) -> str:
        return self.tokens.issue(TokenKind.ACCESS, user_id)

    def auth(self, user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token_for(user_id)}"}


def _patch_lifespan(store: UserStore, email_queue: MagicMock, broker: AssetBroker, oauth: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, a mocked email queue, a broker over a mocked S3
    client, and a mocked OAuth registry into app.state so no test touches
    the network.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.user_store = store
        app.state.email_queue = email_queue
        app.state.session_manager = SessionManager(store, TokenService(settings), email_queue, settings)
        app.state.login_limiter = LoginRateLimiter(
            limit=settings.login_rate_limit_attempts,
            window_seconds=settings.login_rate_limit_window_seconds,
        )
        app.state.asset_broker = broker
        app.state.oauth = oauth
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_env(tmp_path_factory) -> Generator[ApiEnv, None, None]:
    """One TestClient per test module for speed.

    The admin user is created before the client starts.
    """
    store = UserStore(f"sqlite:///{tmp_path_factory.mktemp('api') / 'users.db'}")
    admin = make_user(store, ADMIN_EMAIL, ADMIN_PASSWORD, role=Role.ADMIN, first_name="Ada", last_name="Admin")
    email_queue = MagicMock()
    s3 = MagicMock()
    oauth = MagicMock()

    app.router.lifespan_context = _patch_lifespan(store, email_queue, make_broker(s3), oauth)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            store=store,
            email_queue=email_queue,
            s3=s3,
            oauth=oauth,
            tokens=TokenService(get_settings()),
            admin_id=admin.id,
        )

    store.close()


@pytest.fixture
def api(api_env) -> ApiEnv:
    """Per-test view of api_env with a clean cookie jar, fresh mocks and reset limits.

    Cookies from a previous test's login would otherwise take priority over
    the Bearer header a test sends.
    """
    api_env.client.cookies.clear()
    api_env.email_queue.reset_mock()
    api_env.s3.reset_mock(return_value=True, side_effect=True)
    api_env.oauth.reset_mock(return_value=True, side_effect=True)
    app.state.login_limiter.reset()
    limiter.reset()
    return api_env
