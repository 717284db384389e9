"""Health-check endpoint for load balancers and monitoring."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sliding_quota import __version__
from sliding_quota.dependencies.limiter import get_store
from sliding_quota.models.schemas import HealthResponse
from sliding_quota.services.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check(
    store: KeyValueStore = Depends(get_store),
) -> HealthResponse | JSONResponse:
    """Return service health, including whether the quota store answers."""
    try:
        await store.ping()
    except StoreError:
        logger.exception("Health check: quota store unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "error": "store_unavailable"},
        )

    return HealthResponse(status="ok", version=__version__, store="ok")
