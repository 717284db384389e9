"""Quota introspection endpoint.

Sits under the rate-limited prefix, so calling it counts as a request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from sliding_quota.dependencies.limiter import get_client_key, get_limiter
from sliding_quota.models.schemas import QuotaStatusResponse
from sliding_quota.services.window_limiter import WindowLimiter

router = APIRouter(tags=["quota"])


@router.get("/quota", response_model=QuotaStatusResponse, summary="Current quota usage")
async def get_quota(
    client_key: str = Depends(get_client_key),
    limiter: WindowLimiter = Depends(get_limiter),
) -> QuotaStatusResponse:
    """Report how much of the rolling-window quota the caller has used."""
    status = await limiter.status(client_key)
    return QuotaStatusResponse(
        client_key=client_key,
        limit=status.limit,
        used=status.used,
        remaining=status.remaining,
        window_hours=status.window_seconds / 3600,
        reset_at=status.reset_at,
    )
