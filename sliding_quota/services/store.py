"""Key-value store backends used to hold per-client window logs.

``RedisStore`` is the production backend and shares state across every
process pointed at the same Redis. ``InMemoryStore`` keeps state in the
current process only and is meant for development and tests.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from sliding_quota.config import Settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store fails or holds unusable data."""


class StoreConflict(StoreError):
    """Raised when a compare-and-set loop gives up under contention."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def compare_and_set(self, key: str, expected: str | None, value: str) -> bool: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


# KEYS[1] = key
# ARGV[1] = "1" if a previous value is expected, "0" if the key must be absent
# ARGV[2] = expected value
# ARGV[3] = new value
# ARGV[4] = ttl in seconds, "0" for none
_CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '0' then
    if current then return 0 end
elseif current ~= ARGV[2] then
    return 0
end
if tonumber(ARGV[4]) > 0 then
    redis.call('SET', KEYS[1], ARGV[3], 'EX', ARGV[4])
else
    redis.call('SET', KEYS[1], ARGV[3])
end
return 1
"""


class RedisStore:
    """Store backed by a shared ``redis.asyncio.Redis`` client.

    The client must be created with ``decode_responses=True`` so values come
    back as ``str``.
    """

    def __init__(self, redis: Redis, *, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._cas = redis.register_script(_CAS_SCRIPT)

    @classmethod
    def from_url(cls, url: str, *, ttl_seconds: int | None = None) -> RedisStore:
        return cls(Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            logger.error("Redis GET failed for %r: %r", key, exc)
            raise StoreError(f"failed to read {key!r}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value, ex=self._ttl)
        except RedisError as exc:
            logger.error("Redis SET failed for %r: %r", key, exc)
            raise StoreError(f"failed to write {key!r}") from exc

    async def compare_and_set(self, key: str, expected: str | None, value: str) -> bool:
        args = [
            "0" if expected is None else "1",
            expected or "",
            value,
            str(self._ttl or 0),
        ]
        try:
            result = await self._cas(keys=[key], args=args)
        except RedisError as exc:
            logger.error("Redis compare-and-set failed for %r: %r", key, exc)
            raise StoreError(f"failed to write {key!r}") from exc
        return int(result) == 1

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            raise StoreError("redis is unreachable") from exc

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryStore:
    """Process-local store with optional per-key expiry.

    None of the methods await between reading and writing, so each call is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _read(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _write(self, key: str, value: str) -> None:
        expires_at = self._clock() + self._ttl if self._ttl else None
        self._data[key] = (value, expires_at)

    async def get(self, key: str) -> str | None:
        return self._read(key)

    async def set(self, key: str, value: str) -> None:
        self._write(key, value)

    async def compare_and_set(self, key: str, expected: str | None, value: str) -> bool:
        if self._read(key) != expected:
            return False
        self._write(key, value)
        return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()


def create_store(settings: Settings) -> KeyValueStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory quota store; limits are not shared between processes")
        return InMemoryStore(ttl_seconds=settings.key_ttl_seconds)
    return RedisStore.from_url(settings.redis_url, ttl_seconds=settings.key_ttl_seconds)
