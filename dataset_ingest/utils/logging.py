"""Structured logging helpers.

Events are logged as JSON object messages (``{"event": ..., **fields}``) so the
same record renders as one JSON line in the log file and as a short
``event key=value`` line on the console.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Mapping

DEFAULT_LOG_LEVEL = os.getenv("DATASET_LOG_LEVEL", "INFO")
DEFAULT_LOG_DIR = Path(os.getenv("DATASET_LOG_DIR", "data/logs"))
DEFAULT_LOG_FILE = "datasets.log"
LOG_MAX_BYTES = int(os.getenv("DATASET_LOG_MAX_BYTES", 10 * 1024 * 1024))
LOG_BACKUP_COUNT = int(os.getenv("DATASET_LOG_BACKUPS", 3))

# Marks handlers installed here so reconfiguring replaces them instead of stacking.
_MANAGED_ATTR = "_dataset_ingest_managed"


def configure_logging(log_level: str | None = None, log_path: Path | None = None) -> None:
    """Install a console handler and a rotating JSON-lines file handler on the root logger."""
    level = getattr(logging, (log_level or DEFAULT_LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, _MANAGED_ATTR, False)]:
        root.removeHandler(handler)
        handler.close()

    destination = log_path or DEFAULT_LOG_DIR / DEFAULT_LOG_FILE
    destination.parent.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())
    file_handler = RotatingFileHandler(
        destination, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setFormatter(JsonFormatter())

    for handler in (console_handler, file_handler):
        setattr(handler, _MANAGED_ATTR, True)
        root.addHandler(handler)
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def event_message(event: str, fields: Mapping[str, Any] | None = None) -> str:
    return json.dumps({"event": event, **(fields or {})}, default=str)


def _split_event(message: str) -> tuple[str | None, dict[str, Any]] | None:
    if not message.startswith("{"):
        return None
    try:
        payload = json.loads(message)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    event = payload.pop("event", None)
    return event, payload


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "logger": record.name,
            "severity": record.levelname,
        }
        message = record.getMessage()
        parsed = _split_event(message)
        if parsed is None:
            data["message"] = message
        else:
            event, fields = parsed
            if event is not None:
                data["event"] = event
            data.update(fields)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output; structured payloads render as ``event key=value``."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = time.strftime("%H:%M:%S", time.localtime(record.created))
        message = record.getMessage()
        parsed = _split_event(message)
        if parsed is not None:
            event, fields = parsed
            message = event or message
            if fields:
                message += " " + " ".join(f"{key}={fields[key]}" for key in sorted(fields))
        output = f"{timestamp} | {record.levelname:<8} | {record.name} | {message}"
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **extra: Any) -> None:
    logger.log(level, event_message(event, extra))


def log_warning(logger: logging.Logger, event: str, **extra: Any) -> None:
    log_event(logger, event, level=logging.WARNING, **extra)


@contextmanager
def log_timing(logger: logging.Logger, event: str, **extra: Any) -> Iterator[dict[str, Any]]:
    """Log ``<event>.start`` and ``.complete``/``.error`` with ``elapsed_ms``.

    The yielded dict is merged into the closing record, so the block can attach
    results (row counts, ids) it only learns while running.
    """
    fields: dict[str, Any] = dict(extra)
    start = time.perf_counter()
    logger.debug(event_message(f"{event}.start", fields))
    try:
        yield fields
    except Exception:
        fields["elapsed_ms"] = round((time.perf_counter() - start) * 1000.0, 3)
        logger.exception(event_message(f"{event}.error", fields))
        raise
    fields["elapsed_ms"] = round((time.perf_counter() - start) * 1000.0, 3)
    logger.info(event_message(f"{event}.complete", fields))
