from __future__ import annotations

import json
import logging

import pytest

from dataset_ingest.utils.logging import (
    ConsoleFormatter,
    JsonFormatter,
    configure_logging,
    get_logger,
    log_event,
    log_timing,
)


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord("dataset_ingest.test", logging.INFO, __file__, 1, message, None, None)


def test_log_event_emits_json_payload(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("dataset_ingest.test")

    with caplog.at_level(logging.INFO, logger="dataset_ingest.test"):
        log_event(logger, "dataset.created", dataset_id="d1", row_count=2)

    payload = json.loads(caplog.records[0].getMessage())
    assert payload == {"event": "dataset.created", "dataset_id": "d1", "row_count": 2}


def test_log_timing_reports_errors(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("dataset_ingest.test")

    with caplog.at_level(logging.DEBUG, logger="dataset_ingest.test"):
        with pytest.raises(ValueError):
            with log_timing(logger, "sheet.parse", size_bytes=10):
                raise ValueError("bad")

    events = [json.loads(record.getMessage())["event"] for record in caplog.records]
    assert events == ["sheet.parse.start", "sheet.parse.error"]


def test_json_formatter_unwraps_events() -> None:
    formatted = json.loads(JsonFormatter().format(_record('{"event": "sheet.imported", "rows": 3}')))

    assert formatted["event"] == "sheet.imported"
    assert formatted["rows"] == 3
    assert formatted["severity"] == "INFO"


def test_json_formatter_keeps_plain_messages() -> None:
    formatted = json.loads(JsonFormatter().format(_record("plain text")))

    assert formatted["message"] == "plain text"


def test_console_formatter_lists_details() -> None:
    output = ConsoleFormatter().format(_record('{"event": "dataset.deleted", "dataset_id": "d1"}'))

    assert "dataset.deleted" in output
    assert "dataset_id=d1" in output


def test_configure_logging_creates_log_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    destination = tmp_path / "logs" / "datasets.log"

    configure_logging("DEBUG", destination)
    try:
        log_event(get_logger("dataset_ingest.test"), "configured")
        for handler in root.handlers:
            handler.flush()
        lines = destination.read_text().splitlines()
        assert json.loads(lines[-1])["event"] == "configured"
    finally:
        for handler in root.handlers:
            handler.close()


def test_log_timing_attaches_block_results(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("dataset_ingest.test")

    with caplog.at_level(logging.INFO, logger="dataset_ingest.test"):
        with log_timing(logger, "ingest.parse", file_name="people.csv") as fields:
            fields["row_count"] = 2

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "ingest.parse.complete"
    assert payload["row_count"] == 2
    assert payload["file_name"] == "people.csv"
    assert payload["elapsed_ms"] >= 0
