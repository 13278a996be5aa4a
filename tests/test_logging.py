"""Tests for JSONL event logging."""

import json
from pathlib import Path

import pytest

from companion.logging import JSONLLogger, LogEntry


@pytest.fixture
def logger(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path)


def read_entries(path: Path) -> list[dict]:
    with open(path) as f:
        return [json.loads(line) for line in f]


def test_log_entry_to_dict():
    """Test LogEntry drops unset keys."""
    entry = LogEntry(timestamp="2024-01-01T00:00:00Z", event="test")

    assert entry.to_dict() == {"timestamp": "2024-01-01T00:00:00Z", "event": "test"}


def test_fields_cannot_shadow_core_keys():
    entry = LogEntry(timestamp="t", event="real", fields={"event": "fake", "n": 1})

    assert entry.to_dict() == {"timestamp": "t", "event": "real", "n": 1}


def test_log_writes_jsonl(logger: JSONLLogger):
    """Test that logs are written in JSONL format."""
    logger.log("event1", thread_id="t1")
    logger.log("event2", thread_id="t2")

    entries = read_entries(logger.log_path)
    assert [e["event"] for e in entries] == ["event1", "event2"]
    assert entries[0]["thread_id"] == "t1"


def test_log_exchange_sealed(logger: JSONLLogger):
    logger.log_exchange_sealed("t1", fragments=3, chars=9, duration_ms=12.54, fallback=True)

    entry = read_entries(logger.log_path)[0]
    assert entry["event"] == "exchange_sealed"
    assert entry["thread_id"] == "t1"
    assert entry["duration_ms"] == 12.5
    assert (entry["fragments"], entry["chars"], entry["fallback"]) == (3, 9, True)


def test_log_sync_push(logger: JSONLLogger):
    logger.log_sync_push(threads=2, failed=1, duration_ms=3.0)

    entry = read_entries(logger.log_path)[0]
    assert entry["event"] == "sync_push"
    assert (entry["threads"], entry["failed"]) == (2, 1)


def test_set_user_id(logger: JSONLLogger):
    """Test that set_user_id applies to subsequent logs."""
    logger.set_user_id("u1")
    logger.log("event1")
    logger.log("event2", user_id="u2")
    logger.set_user_id(None)
    logger.log("event3")

    entries = read_entries(logger.log_path)
    assert [e.get("user_id") for e in entries] == ["u1", "u2", None]


def test_rotation_keeps_numbered_backups(tmp_path: Path):
    """Test log rotation when max size is exceeded."""
    logger = JSONLLogger(log_dir=tmp_path, max_size_mb=0.001, backups=2)  # ~1KB

    for i in range(100):
        logger.log(f"event_{i}", data="x" * 100)

    assert logger.rotated_path(1).exists()
    assert logger.rotated_path(2).exists()
    assert not logger.rotated_path(3).exists()
    newest = read_entries(logger.log_path)[-1]
    assert newest["event"] == "event_99"


def test_write_failure_is_not_raised(tmp_path: Path, caplog):
    logger = JSONLLogger(log_dir=tmp_path)
    logger.log_path.mkdir()

    logger.log("event1")

    assert "Could not write 'event1'" in caplog.text
