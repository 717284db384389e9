"""Tests for structured log formatting."""

from __future__ import annotations

import json
import logging

from sliding_quota.logging_config import JSONFormatter


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="sliding_quota.services.window_limiter",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Quota exceeded for %r",
        args=("10.0.0.1",),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_message_and_level() -> None:
    data = json.loads(JSONFormatter().format(_record()))
    assert data["level"] == "INFO"
    assert data["logger"] == "sliding_quota.services.window_limiter"
    assert data["message"] == "Quota exceeded for '10.0.0.1'"
    assert "client_key" not in data


def test_json_formatter_includes_decision_fields() -> None:
    data = json.loads(
        JSONFormatter().format(_record(client_key="10.0.0.1", decision="deny", limit=110))
    )
    assert data["client_key"] == "10.0.0.1"
    assert data["decision"] == "deny"
    assert data["limit"] == 110
