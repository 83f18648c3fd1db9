from __future__ import annotations

import json
import logging

from azure_sla.logging import (
    JsonFormatter,
    LogConfig,
    PlainFormatter,
    StepTimers,
    add_run_log_file,
    log_event,
    remove_run_log_file,
    setup_logging,
)


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
    record = _record()
    record.good = {"a": 1, "b": [1, 2]}
    record.bad = {"obj": object()}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "hello"
    assert payload["good"] == {"a": 1, "b": [1, 2]}
    assert "bad" not in payload


def test_plain_formatter_prefixes_step_and_phase() -> None:
    record = _record("Retrieval complete")
    record.step = "collect"
    record.phase = "complete"
    record.duration_ms = 12
    text = PlainFormatter().format(record)
    assert "[collect:complete] Retrieval complete (duration_ms=12)" in text


def test_log_event_times_steps(caplog) -> None:
    timers = StepTimers()
    logger = logging.getLogger("unit.events")
    with caplog.at_level(logging.INFO, logger="unit.events"):
        log_event(logger, logging.INFO, "start", step="collect", phase="start", timers=timers)
        log_event(logger, logging.INFO, "done", step="collect", phase="complete", timers=timers, rows=3)

    first, second = caplog.records
    assert first.event == "collect.start"
    assert not hasattr(first, "duration_ms")
    assert second.event == "collect.complete"
    assert second.rows == 3
    assert isinstance(second.duration_ms, int)


def test_add_run_log_file_writes(tmp_path) -> None:
    if getattr(setup_logging, "_configured", False):
        setattr(setup_logging, "_configured", False)
    setup_logging(LogConfig(level="INFO", json_logs=False))

    log_path = tmp_path / "logs" / "debug.log"
    add_run_log_file(log_path)

    logger = logging.getLogger("unit.test")
    logger.info("file log test")
    remove_run_log_file(log_path)
    logger.info("after removal")

    content = log_path.read_text(encoding="utf-8")
    assert "file log test" in content
    assert "after removal" not in content
