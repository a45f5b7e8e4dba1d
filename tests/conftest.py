"""
tests/conftest.py -- Shared test fixtures for AniVault unit and integration tests.

This module provides:
  - FakeClock: controllable datetime clock for ledger / session tests
  - FakeResponse / FakeSession: stand-ins for requests.Session in gateway tests
  - _make_user_store(): isolated in-memory credential store
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient with an admin access token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Concurrency tests that need real parallel writers use a file-backed SQLite DB
under tmp_path instead: shared-cache memory DBs report SQLITE_LOCKED to
concurrent writers rather than waiting on the busy handler.

The DEBUG env var must be set before any core/auth module import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# CRITICAL: Set env before any core/auth import so get_settings() can
# auto-generate SECRET_KEY and accept TestClient's Host header.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.ledger import RefreshTokenLedger
from auth.models import Role, User
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenSigner, hash_password
from cache.store import ResponseCache
from core.gateway import CacheAsideGateway
from core.jikan import JikanClient
from core.ratelimit import OutboundRateLimiter

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters-long"
ADMIN_EMAIL = "admin@anivault.test"
ADMIN_PASSWORD = "adminpass123"

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, headers: Optional[dict] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order.

    When the queue runs dry, the last entry is repeated.
    """

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.calls: list[str] = []
        self.closed = False

    def get(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append(url)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def queue(self, *responses: Any) -> None:
        """Replace pending responses and forget earlier calls."""
        self._responses = list(responses)
        self.calls.clear()

    def close(self) -> None:
        self.closed = True


def anime_payload(mal_id: int = 1, title: str = "Cowboy Bebop", **extra: Any) -> dict:
    record = {
        "mal_id": mal_id,
        "url": f"https://myanimelist.net/anime/{mal_id}",
        "title": title,
        "type": "TV",
        "episodes": 26,
        "status": "Finished Airing",
        "airing": False,
        "aired": {"from": "1998-04-03T00:00:00+00:00", "to": "1999-04-24T00:00:00+00:00", "string": "Apr 3, 1998 to Apr 24, 1999"},
        "score": 8.75,
        "rank": 46,
        "images": {"jpg": {"image_url": "https://cdn.example/1.jpg"}},
        "studios": [{"mal_id": 14, "name": "Sunrise"}],
        "genres": [{"mal_id": 1, "name": "Action"}],
    }
    record.update(extra)
    return record


def page_payload(*records: dict, current_page: int = 1, has_next_page: bool = False) -> dict:
    return {
        "pagination": {"current_page": current_page, "last_visible_page": current_page + (1 if has_next_page else 0), "has_next_page": has_next_page},
        "data": list(records),
    }


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_user_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory credential store.

    Args:
        db_suffix: Unique string appended to the DB name so tests and modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = _make_user_store(uuid.uuid4().hex)
    yield user_store
    user_store.close()


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(TEST_SECRET)


@pytest.fixture
def ledger(store: UserStore, clock: FakeClock) -> RefreshTokenLedger:
    return RefreshTokenLedger(store, lifetime_seconds=3600, clock=clock)


@pytest.fixture
def sessions(store: UserStore, signer: TokenSigner, ledger: RefreshTokenLedger, clock: FakeClock) -> SessionManager:
    return SessionManager(store, signer, ledger, access_lifetime_seconds=900, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, cache: ResponseCache, http: FakeSession):
    """Return an async context manager that replaces the real lifespan.

    Wires the test credential store, a temp-file response cache, and a gateway
    backed by FakeSession into app.state, so no test touches the network or
    the production databases.

    The housekeeping_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        ledger = RefreshTokenLedger(user_store, lifetime_seconds=3600)
        app.state.user_store = user_store
        app.state.ledger = ledger
        app.state.sessions = SessionManager(user_store, TokenSigner(TEST_SECRET), ledger, access_lifetime_seconds=900)
        app.state.cache = cache
        app.state.gateway = CacheAsideGateway(cache, OutboundRateLimiter(per_second=50, per_minute=500), session=http)
        app.state.jikan = JikanClient(app.state.gateway)
        app.state.housekeeping_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.housekeeping_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, FakeSession], None, None]:
    """Yield (client, admin_token, http) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers. An admin
    account is created up front; its access token is signed with TEST_SECRET.
    http is the FakeSession behind the gateway -- tests queue upstream
    responses on it with http.queue(...).
    """
    user_store = _make_user_store(f"api_{uuid.uuid4().hex}")
    cache = ResponseCache(tmp_path_factory.mktemp("cache") / "responses.db", ttl=3600)
    http = FakeSession(FakeResponse(200, page_payload()))

    admin = User(email=ADMIN_EMAIL, username="siteadmin", hashed_password=hash_password(ADMIN_PASSWORD), role=Role.admin, email_verified=True)
    user_store.create_user(admin)
    token, _claims = TokenSigner(TEST_SECRET).issue(admin, 3600)

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(user_store, cache, http)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, http

    cache.close()
    user_store.close()
