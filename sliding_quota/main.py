"""FastAPI application entry-point for the sliding-quota service.

Every request under the configured API prefix passes through the
sliding-window limiter before reaching its route.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sliding_quota import __version__
from sliding_quota.config import Settings, get_settings
from sliding_quota.logging_config import configure_logging, is_production
from sliding_quota.middleware.rate_limit import RateLimitMiddleware
from sliding_quota.middleware.security import SecurityHeadersMiddleware
from sliding_quota.routers import health, quota
from sliding_quota.services.store import KeyValueStore, StoreError, create_store
from sliding_quota.services.window_limiter import create_limiter

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Check the store on startup and release it on shutdown."""
    configure_logging()
    _logger.info("Starting sliding-quota service")

    try:
        await app.state.store.ping()
    except StoreError:
        _logger.warning("Quota store is not reachable at startup; requests will fail until it is")
    yield
    _logger.info("Shutting down sliding-quota service")
    await app.state.store.close()


def create_app(settings: Settings | None = None, store: KeyValueStore | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    *store* overrides the backend selected by *settings*; tests pass an
    ``InMemoryStore`` here.
    """
    if settings is None:
        settings = get_settings()
    if store is None:
        store = create_store(settings)

    application = FastAPI(
        title="Sliding Quota",
        description="Per-client rolling-window request quota backed by a shared store.",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.store = store
    application.state.limiter = create_limiter(settings, store)

    # -- Middleware ------------------------------------------------------------
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(RateLimitMiddleware, path_prefix=settings.rate_limit_path_prefix)
    # CORS stays outermost so headers are present on error responses too.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )

    # -- Routers ---------------------------------------------------------------
    application.include_router(health.router)
    application.include_router(quota.router, prefix="/api/v1")

    # -- Exception handlers ----------------------------------------------------
    @application.exception_handler(Exception)
    async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch unhandled exceptions, including store failures, as a plain 500."""
        _logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

        if is_production():
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"},
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc),
                "type": type(exc).__name__,
            },
        )

    return application


app = create_app()
