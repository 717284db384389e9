"""Shared pytest fixtures for the sliding-quota test suite.

Uses ``InMemoryStore`` so tests are fast and need no running Redis.
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sliding_quota.config import Settings
from sliding_quota.main import create_app
from sliding_quota.services.store import InMemoryStore


# ---------------------------------------------------------------------------
# Settings override
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        store_backend="memory",
        window_size_hours=1,
        max_requests=3,
        compaction_interval_hours=1,
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


# ---------------------------------------------------------------------------
# httpx AsyncClient wired to the FastAPI app
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def client(settings: Settings, store: InMemoryStore) -> AsyncIterator[AsyncClient]:
    app = create_app(settings=settings, store=store)

    # Unhandled errors are still turned into 500 responses by the app; keep
    # httpx from re-raising them so tests can assert on the response.
    transport = ASGITransport(app=app, raise_app_exceptions=False)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
