"""Service configuration via pydantic-settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    All variables are prefixed with ``SLQ_`` (e.g. ``SLQ_MAX_REQUESTS``).
    """

    # Store
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = ""
    key_ttl_seconds: int | None = Field(default=None, gt=0)

    # Quota
    window_size_hours: int = Field(default=24, gt=0)
    max_requests: int = Field(default=110, ge=1)
    compaction_interval_hours: int = Field(default=1, gt=0)

    # Write behaviour
    atomic_updates: bool = True
    cas_max_attempts: int = Field(default=5, ge=1)
    prune_on_write: bool = True

    # Requests under this path prefix go through admission control
    rate_limit_path_prefix: str = "/api/"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_prefix="SLQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def model_post_init(self, __context: object) -> None:
        """Reject a compaction interval longer than the window."""
        if self.compaction_interval_hours > self.window_size_hours:
            raise ValueError(
                "SLQ_COMPACTION_INTERVAL_HOURS must not exceed SLQ_WINDOW_SIZE_HOURS"
            )
        if not self.atomic_updates:
            _logger.warning(
                "Atomic quota updates are disabled; concurrent requests from one client "
                "may exceed the limit."
            )

    @property
    def window_seconds(self) -> int:
        return self.window_size_hours * 3600

    @property
    def compaction_interval_seconds(self) -> int:
        return self.compaction_interval_hours * 3600


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance."""
    return Settings()
