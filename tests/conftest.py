"""Pytest configuration."""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import pytest

# Ensure test environment (before anything imports linkpulse.config)
os.environ.setdefault("LP_DEBUG", "true")
os.environ.setdefault("LP_BASE_URL", "http://lnkp.test")
os.environ.setdefault("LP_DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("LP_CREATE_TABLES_ON_STARTUP", "true")
os.environ.setdefault("LP_AGGREGATOR_WORKERS", "1")
os.environ.setdefault("LP_AGGREGATOR_RETRY_BASE_DELAY_SECONDS", "0.01")
os.environ.setdefault("LP_AGGREGATOR_SHUTDOWN_TIMEOUT_SECONDS", "1")
os.environ.setdefault("LP_STORE_RETRY_BASE_DELAY_SECONDS", "0.001")
os.environ.setdefault("LP_REDIRECT_LOOKUP_TIMEOUT_SECONDS", "2")
os.environ.setdefault("LP_RATE_LIMIT_SHORTEN_PER_MINUTE", "100000")

from linkpulse.config import get_settings  # noqa: E402
from linkpulse.models import database  # noqa: E402

OWNER = "user-alice"
OTHER_OWNER = "user-bob"

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def auth(owner: str = OWNER) -> dict:
    return {"Authorization": f"Bearer {owner}"}


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    """Fresh SQLite file per test; settings and engine rebuilt from it."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'linkpulse.db'}"
    monkeypatch.setenv("LP_DATABASE_URL", url)
    get_settings.cache_clear()
    database._engine = None
    database._async_session = None
    yield url
    get_settings.cache_clear()
    database._engine = None
    database._async_session = None


@pytest.fixture
def run_store(database_url):
    """Run `fn(session_maker)` on a fresh event loop against the test schema."""

    def runner(fn):
        async def main():
            await database.create_tables()
            try:
                return await fn(database.get_session_maker())
            finally:
                await database.dispose_engine()

        return asyncio.run(main())

    return runner


@pytest.fixture
def client(database_url):
    """App client with lifespan running; bearer token == owner id."""
    from fastapi.testclient import TestClient

    from linkpulse.main import app
    from linkpulse.middleware.rate_limit import reset_rate_limits

    reset_rate_limits()
    validate = AsyncMock(side_effect=lambda token: {"id": token, "email": f"{token}@example.com"})
    with patch("linkpulse.middleware.auth._validate_token", validate):
        with TestClient(app, follow_redirects=False) as c:
            yield c


def drain(client) -> None:
    """Let the aggregator catch up (the bounded-staleness window)."""
    client.portal.call(client.app.state.aggregator.drain)


def shorten(client, url: str = "https://example.com/a", owner: str = OWNER) -> dict:
    resp = client.post("/api/url/shorten", json={"originalUrl": url}, headers=auth(owner))
    assert resp.status_code == 201, resp.text
    return resp.json()
