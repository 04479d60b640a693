from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from cloud_monitor.logging import JsonFormatter, LogConfig, PlainFormatter, add_run_log_file, setup_logging
from cloud_monitor.model.kinds import ResourceKind
from cloud_monitor.util.serialization import REDACTED_VALUE, sanitize_for_json, stable_json_dumps


def test_sanitize_for_json_redacts_sensitive_fields() -> None:
    payload = {
        "DbPassword": "hunter2",
        "tokenValue": "abc",
        "nested": {"ClientSecret": "s3cr3t", "safe": 1},
    }

    sanitized = sanitize_for_json(payload)

    assert sanitized["DbPassword"] == REDACTED_VALUE
    assert sanitized["tokenValue"] == REDACTED_VALUE
    assert sanitized["nested"]["ClientSecret"] == REDACTED_VALUE
    assert sanitized["nested"]["safe"] == 1


def test_sanitize_for_json_handles_datetime_enum_and_bytes() -> None:
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    payload = {
        "when": ts,
        "blob": b"bytes",
        "kind": ResourceKind.STACK,
        "age": timedelta(minutes=2),
        "ids": {"b", "a"},
    }

    sanitized = sanitize_for_json(payload)

    assert sanitized["when"] == "2024-01-01T00:00:00+00:00"
    assert sanitized["blob"] == "bytes"
    assert sanitized["kind"] == "stack"
    assert sanitized["age"] == 120
    assert sanitized["ids"] == ["a", "b"]


def test_stable_json_dumps_sorts_keys() -> None:
    assert stable_json_dumps({"b": 1, "a": 2}) == '{"a":2,"b":1}'


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="unit",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_skips_non_serializable_extras() -> None:
    formatter = JsonFormatter()
    record = _record()
    record.good = {"a": 1, "b": [1, 2]}
    record.bad = {"obj": object()}

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "hello"
    assert payload["good"] == {"a": 1, "b": [1, 2]}
    assert "bad" not in payload


def test_plain_formatter_prefixes_step_and_phase() -> None:
    record = _record("Found 3 EBS volumes")
    record.step = "fetch"
    record.phase = "volumes"
    record.duration_ms = 12

    line = PlainFormatter().format(record)

    assert "[fetch:volumes] Found 3 EBS volumes (duration_ms=12)" in line


def test_add_run_log_file_writes(tmp_path) -> None:
    if getattr(setup_logging, "_configured", False):
        setattr(setup_logging, "_configured", False)
    setup_logging(LogConfig(level="INFO", json_logs=False))

    log_path = tmp_path / "logs" / "run.log"
    add_run_log_file(log_path)

    logger = logging.getLogger("unit.test")
    logger.info("file log test")

    content = log_path.read_text(encoding="utf-8")
    assert "file log test" in content
