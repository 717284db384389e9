"""Sliding-window-log rate limiter backed by a shared key-value store.

Each client key maps to a ``ClientWindowLog`` of compacted buckets. A request
is admitted while the number of requests recorded inside the trailing window
is below ``max_requests``. Admitted requests are written back to the store;
denied requests are not recorded, so probing while blocked neither consumes
nor refreshes quota.

Two write modes are supported:

``atomic=False``
    Plain read, decide, write. Concurrent evaluations for the same key may
    both read the same log, both be admitted, and the later write replaces
    the earlier one. Under a burst from one client the limit can therefore
    be exceeded.

``atomic=True``
    The write is a compare-and-set against the exact value that was read.
    When another writer got there first the log is re-read and the decision
    is made again, so admissions are serialized per client key.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sliding_quota.services.store import KeyValueStore, StoreConflict, StoreError
from sliding_quota.services.window_log import ClientWindowLog, LogDecodeError

if TYPE_CHECKING:
    from sliding_quota.config import Settings

logger = logging.getLogger(__name__)


class InvalidClientKey(ValueError):
    """Raised when a request carries no usable client key."""


class QuotaExceeded(Exception):
    """Raised when a client has used up its quota for the current window."""

    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        super().__init__(decision.message)


@dataclass(frozen=True)
class Decision:
    """Outcome of a single admission check."""

    allowed: bool
    limit: int
    window_seconds: int
    used: int
    reset_at: int | None = None
    retry_after: int | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def window_hours(self) -> float:
        return self.window_seconds / 3600

    @property
    def message(self) -> str:
        return f"You have exceeded the {self.limit} requests in {self.window_hours:g} hrs limit!"


@dataclass(frozen=True)
class QuotaStatus:
    """Read-only view of a client's current usage."""

    limit: int
    used: int
    window_seconds: int
    reset_at: int | None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class WindowLimiter:
    """Admission control over a rolling window, shared through *store*.

    Parameters
    ----------
    store:
        Backend holding one serialized log per client key.
    window_seconds:
        Length of the rolling window.
    max_requests:
        Requests admitted inside any window.
    compaction_interval_seconds:
        Requests within one interval share a bucket. Must not exceed the
        window.
    atomic:
        Use compare-and-set writes so concurrent evaluations for one key are
        serialized.
    prune:
        Drop buckets older than the window whenever a log is written.
    key_prefix:
        Prepended to every client key when addressing the store.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        window_seconds: int,
        max_requests: int,
        compaction_interval_seconds: int,
        atomic: bool = True,
        max_attempts: int = 5,
        prune: bool = True,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if not 0 < compaction_interval_seconds <= window_seconds:
            raise ValueError("compaction_interval_seconds must be in (0, window_seconds]")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._store = store
        self._window = window_seconds
        self._max_requests = max_requests
        self._interval = compaction_interval_seconds
        self._atomic = atomic
        self._max_attempts = max_attempts
        self._prune = prune
        self._key_prefix = key_prefix
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def evaluate(self, client_key: str, now: int | None = None) -> Decision:
        """Decide whether *client_key* may make a request at *now*.

        Admitted requests are recorded in the store before returning. Raises
        ``InvalidClientKey`` for an empty key and ``StoreError`` when the
        store fails or holds a value that is not a valid log.
        """
        key = self._store_key(client_key)
        if now is None:
            now = int(self._clock())

        if not self._atomic:
            raw = await self._store.get(key)
            decision, updated = self._decide(key, raw, now)
            if updated is not None:
                await self._store.set(key, updated.encode())
            return decision

        for attempt in range(1, self._max_attempts + 1):
            raw = await self._store.get(key)
            decision, updated = self._decide(key, raw, now)
            if updated is None:
                return decision
            if await self._store.compare_and_set(key, raw, updated.encode()):
                return decision
            logger.debug("Concurrent update on %r, retrying (attempt %d)", key, attempt)

        raise StoreConflict(f"gave up updating {key!r} after {self._max_attempts} attempts")

    async def check(self, client_key: str, now: int | None = None) -> Decision:
        """Like ``evaluate`` but raise ``QuotaExceeded`` instead of returning a denial."""
        decision = await self.evaluate(client_key, now)
        if not decision.allowed:
            raise QuotaExceeded(decision)
        return decision

    async def status(self, client_key: str, now: int | None = None) -> QuotaStatus:
        """Report current usage for *client_key* without recording a request."""
        key = self._store_key(client_key)
        if now is None:
            now = int(self._clock())

        log = self._load(key, await self._store.get(key))
        window_start = now - self._window
        if log is None:
            return QuotaStatus(self._max_requests, 0, self._window, None)
        return QuotaStatus(
            limit=self._max_requests,
            used=log.total_in_window(window_start),
            window_seconds=self._window,
            reset_at=self._reset_at(log, window_start),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store_key(self, client_key: str) -> str:
        if not client_key or not client_key.strip():
            raise InvalidClientKey("client key must be a non-empty string")
        return f"{self._key_prefix}{client_key}"

    def _load(self, key: str, raw: str | None) -> ClientWindowLog | None:
        if raw is None:
            return None
        try:
            return ClientWindowLog.decode(raw)
        except LogDecodeError as exc:
            logger.warning("Corrupt window log stored under %r: %s", key, exc)
            raise StoreError(f"stored value for {key!r} is not a valid window log") from exc

    def _reset_at(self, log: ClientWindowLog, window_start: int) -> int | None:
        oldest = log.oldest_in_window(window_start)
        return oldest.start + self._window if oldest is not None else None

    def _decide(
        self, key: str, raw: str | None, now: int
    ) -> tuple[Decision, ClientWindowLog | None]:
        """Return the decision and the log to persist (``None`` on deny)."""
        log = self._load(key, raw)
        if log is None:
            return self._allow(1, now + self._window), ClientWindowLog.first_request(now)

        window_start = now - self._window
        used = log.total_in_window(window_start)
        reset_at = self._reset_at(log, window_start)

        if used >= self._max_requests:
            logger.info(
                "Quota exceeded for %r (%d/%d)",
                key,
                used,
                self._max_requests,
                extra={"client_key": key, "decision": "deny", "limit": self._max_requests},
            )
            retry_after = max(1, reset_at - now) if reset_at is not None else None
            return (
                Decision(
                    allowed=False,
                    limit=self._max_requests,
                    window_seconds=self._window,
                    used=used,
                    reset_at=reset_at,
                    retry_after=retry_after,
                ),
                None,
            )

        updated = log.record(now, self._interval)
        if self._prune:
            updated = updated.prune(window_start)
        return self._allow(used + 1, reset_at or now + self._window), updated

    def _allow(self, used: int, reset_at: int) -> Decision:
        return Decision(
            allowed=True,
            limit=self._max_requests,
            window_seconds=self._window,
            used=used,
            reset_at=reset_at,
        )


def create_limiter(settings: Settings, store: KeyValueStore) -> WindowLimiter:
    """Construct the limiter described by *settings* on top of *store*."""
    return WindowLimiter(
        store,
        window_seconds=settings.window_seconds,
        max_requests=settings.max_requests,
        compaction_interval_seconds=settings.compaction_interval_seconds,
        atomic=settings.atomic_updates,
        max_attempts=settings.cas_max_attempts,
        prune=settings.prune_on_write,
        key_prefix=settings.key_prefix,
    )
