"""Tests for the stored window-log model."""

from __future__ import annotations

import pytest

from sliding_quota.services.window_log import (
    Bucket,
    ClientWindowLog,
    LogDecodeError,
)


def _log(*pairs: tuple[int, int]) -> ClientWindowLog:
    return ClientWindowLog(tuple(Bucket(start, count) for start, count in pairs))


class TestEncoding:
    """Stored layout must stay readable by and for existing deployments."""

    def test_encode_uses_compact_legacy_field_names(self) -> None:
        log = _log((0, 2), (3700, 1))
        assert log.encode() == (
            '[{"requestTimeStamp":0,"requestCount":2},'
            '{"requestTimeStamp":3700,"requestCount":1}]'
        )

    def test_decode_value_written_by_earlier_service(self) -> None:
        raw = '[{"requestTimeStamp":1609459200,"requestCount":3},{"requestTimeStamp":1609462900,"requestCount":1}]'
        log = ClientWindowLog.decode(raw)
        assert log.buckets == (Bucket(1609459200, 3), Bucket(1609462900, 1))

    def test_decode_accepts_whitespace(self) -> None:
        raw = '[ {"requestTimeStamp": 10, "requestCount": 1} ]'
        assert ClientWindowLog.decode(raw).buckets == (Bucket(10, 1),)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "{}",
            "[]",
            '[{"requestTimeStamp":10}]',
            '[{"requestTimeStamp":"10","requestCount":1}]',
            '[{"requestTimeStamp":10,"requestCount":0}]',
            '[{"requestTimeStamp":10.5,"requestCount":1}]',
            '[{"requestTimeStamp":10,"requestCount":1,"extra":true}]',
            '[{"requestTimeStamp":20,"requestCount":1},{"requestTimeStamp":10,"requestCount":1}]',
        ],
    )
    def test_decode_rejects_invalid_logs(self, raw: str) -> None:
        with pytest.raises(LogDecodeError):
            ClientWindowLog.decode(raw)


class TestWindowArithmetic:
    def test_window_start_is_exclusive(self) -> None:
        log = _log((100, 2), (200, 3))
        assert log.total_in_window(100) == 3
        assert log.total_in_window(99) == 5

    def test_oldest_in_window(self) -> None:
        log = _log((100, 2), (200, 3))
        assert log.oldest_in_window(150) == Bucket(200, 3)
        assert log.oldest_in_window(200) is None


class TestRecord:
    def test_folds_into_open_bucket(self) -> None:
        log = _log((0, 1)).record(30, compaction_interval=3600)
        assert log.buckets == (Bucket(0, 2),)

    def test_opens_new_bucket_after_interval(self) -> None:
        log = _log((0, 2)).record(3700, compaction_interval=3600)
        assert log.buckets == (Bucket(0, 2), Bucket(3700, 1))

    def test_bucket_exactly_one_interval_old_is_closed(self) -> None:
        log = _log((0, 1)).record(3600, compaction_interval=3600)
        assert log.buckets == (Bucket(0, 1), Bucket(3600, 1))

    def test_record_does_not_mutate_original(self) -> None:
        original = _log((0, 1))
        original.record(10, compaction_interval=3600)
        assert original.buckets == (Bucket(0, 1),)


class TestPrune:
    def test_drops_buckets_outside_window(self) -> None:
        log = _log((0, 5), (50, 1), (120, 2)).prune(window_start=50)
        assert log.buckets == (Bucket(120, 2),)

    def test_keeps_latest_bucket_when_all_expired(self) -> None:
        log = _log((0, 5), (10, 1)).prune(window_start=1000)
        assert log.buckets == (Bucket(10, 1),)
