"""
tests/conftest.py -- Shared test fixtures for Etheryte integration tests.

This module provides:
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: ApiContext with a TestClient, both stores, and seeded
    ADMIN / MODERATOR / USER accounts with live sessions
  - stores: fresh (UserStore, MarketStore) pair for store-level unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
UserStore and MarketStore are opened on the SAME URL so market foreign keys
to users.id resolve.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates the signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate the secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# E-mail stays disabled in tests; notifications only log.
os.environ["RESEND_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.store import UserStore
from market.store import MarketStore
from tests.helpers import ApiContext, bearer, make_db_url, make_user


def _patch_lifespan(user_store: UserStore, market: MarketStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.market = market
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits(request) -> Generator[None, None, None]:
    """Give every test a fresh limiter window; drop cookies a test left behind.

    The client is module-scoped, so cookies set by login/register would
    otherwise authenticate later tests in the same module.
    """
    limiter.reset()
    yield
    if "api_client" in request.fixturenames:
        request.getfixturevalue("api_client").client.cookies.clear()


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    """
    db_url = make_db_url("api")
    user_store = UserStore(db_url)
    market = MarketStore(db_url)

    admin = make_user(user_store, "testadmin", role="ADMIN")
    moderator = make_user(user_store, "testmod", role="MODERATOR")
    user = make_user(user_store, "alice")

    app.router.lifespan_context = _patch_lifespan(user_store, market)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            user_store=user_store,
            market=market,
            admin=admin,
            moderator=moderator,
            user=user,
            admin_headers=bearer(user_store, admin),
            moderator_headers=bearer(user_store, moderator),
            user_headers=bearer(user_store, user),
        )

    market.close()
    user_store.close()


@pytest.fixture
def stores() -> Generator[tuple[UserStore, MarketStore], None, None]:
    """Fresh UserStore + MarketStore sharing one in-memory database."""
    db_url = make_db_url("store")
    user_store = UserStore(db_url)
    market = MarketStore(db_url)
    yield user_store, market
    market.close()
    user_store.close()
