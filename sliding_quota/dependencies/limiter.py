"""FastAPI dependencies for the shared store and limiter."""

from __future__ import annotations

from fastapi import HTTPException, Request

from sliding_quota.services.store import KeyValueStore
from sliding_quota.services.window_limiter import WindowLimiter


def get_store(request: Request) -> KeyValueStore:
    """Return the process-wide store created during application startup."""
    return request.app.state.store


def get_limiter(request: Request) -> WindowLimiter:
    """Return the process-wide ``WindowLimiter``."""
    return request.app.state.limiter


def get_client_key(request: Request) -> str:
    """Key the caller by source address, as ``RateLimitMiddleware`` does."""
    if request.client is None or not request.client.host:
        raise HTTPException(status_code=400, detail="Client address unavailable")
    return request.client.host
