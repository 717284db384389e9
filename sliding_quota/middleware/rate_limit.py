"""Starlette middleware that puts API routes behind the window limiter."""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from sliding_quota.services.window_limiter import (
    Decision,
    InvalidClientKey,
    QuotaExceeded,
    WindowLimiter,
)

logger = logging.getLogger(__name__)


def quota_headers(decision: Decision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if decision.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(decision.reset_at)
    return headers


def quota_exceeded_response(exc: QuotaExceeded) -> JSONResponse:
    """JSend-style 429 body for a denied request."""
    headers = quota_headers(exc.decision)
    if exc.decision.retry_after is not None:
        headers["Retry-After"] = str(exc.decision.retry_after)
    return JSONResponse(
        status_code=429,
        content={"status": "error", "message": str(exc)},
        headers=headers,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client quota to every request under *path_prefix*.

    Clients are keyed by source address. A request without one is answered
    with 400. Store failures are not quota decisions and propagate to the
    generic error handler.
    """

    def __init__(self, app: ASGIApp, *, path_prefix: str = "/api/") -> None:
        super().__init__(app)
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        limiter: WindowLimiter = request.app.state.limiter
        client_ip = request.client.host if request.client else ""

        try:
            decision = await limiter.check(client_ip)
        except InvalidClientKey as exc:
            logger.warning("Rejecting %s %s: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=400, content={"detail": "Request has no client address"})
        except QuotaExceeded as exc:
            return quota_exceeded_response(exc)

        response = await call_next(request)
        response.headers.update(quota_headers(decision))
        return response
