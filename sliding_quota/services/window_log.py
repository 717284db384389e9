"""Per-client request log stored in the key-value store.

A log is an ordered list of buckets. Each bucket aggregates every admitted
request seen during one compaction interval, starting at ``start``.

The serialized form is schema version 1: a compact JSON array of
``{"requestTimeStamp": <int>, "requestCount": <int>}`` objects. Keys written
by earlier deployments use exactly this layout, so the field names must not
change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError


class LogDecodeError(ValueError):
    """Raised when a stored value is not a valid schema-1 window log."""


class _StoredBucket(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requestTimeStamp: StrictInt = Field(..., ge=0)  # noqa: N815
    requestCount: StrictInt = Field(..., ge=1)  # noqa: N815


_STORED_LOG = TypeAdapter(list[_StoredBucket])


@dataclass(frozen=True)
class Bucket:
    """All requests admitted during one compaction interval."""

    start: int
    count: int


@dataclass(frozen=True)
class ClientWindowLog:
    """Immutable request history for one client key.

    Mutating operations return a new log; the caller decides whether to
    persist it.
    """

    buckets: tuple[Bucket, ...]

    @classmethod
    def first_request(cls, now: int) -> ClientWindowLog:
        return cls(buckets=(Bucket(start=now, count=1),))

    # ------------------------------------------------------------------
    # Window arithmetic
    # ------------------------------------------------------------------

    def in_window(self, window_start: int) -> tuple[Bucket, ...]:
        """Buckets that started strictly after *window_start*."""
        return tuple(b for b in self.buckets if b.start > window_start)

    def total_in_window(self, window_start: int) -> int:
        return sum(b.count for b in self.in_window(window_start))

    def oldest_in_window(self, window_start: int) -> Bucket | None:
        active = self.in_window(window_start)
        return active[0] if active else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record(self, now: int, compaction_interval: int) -> ClientWindowLog:
        """Return a copy of the log with one more request recorded at *now*.

        The request is folded into the last bucket while that bucket is
        younger than *compaction_interval*; otherwise a new bucket opens.
        """
        last = self.buckets[-1]
        if last.start > now - compaction_interval:
            return ClientWindowLog(self.buckets[:-1] + (Bucket(last.start, last.count + 1),))
        return ClientWindowLog(self.buckets + (Bucket(start=now, count=1),))

    def prune(self, window_start: int) -> ClientWindowLog:
        """Drop buckets that can no longer count towards the window.

        The most recent bucket is always kept so the log never becomes empty.
        """
        kept = self.in_window(window_start)
        if not kept:
            kept = self.buckets[-1:]
        return ClientWindowLog(kept)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def encode(self) -> str:
        payload = [{"requestTimeStamp": b.start, "requestCount": b.count} for b in self.buckets]
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str | bytes) -> ClientWindowLog:
        """Parse a stored value, rejecting anything that is not a valid log.

        Raises ``LogDecodeError`` for malformed JSON, wrong field names or
        types, an empty list, or buckets out of order.
        """
        try:
            stored = _STORED_LOG.validate_json(raw)
        except ValidationError as exc:
            raise LogDecodeError(f"invalid window log: {exc.error_count()} validation error(s)") from exc

        if not stored:
            raise LogDecodeError("invalid window log: no buckets")

        buckets = tuple(Bucket(start=s.requestTimeStamp, count=s.requestCount) for s in stored)
        for prev, cur in zip(buckets, buckets[1:]):
            if cur.start < prev.start:
                raise LogDecodeError("invalid window log: buckets out of order")
        return cls(buckets=buckets)
