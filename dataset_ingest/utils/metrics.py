from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime
from time import perf_counter
from typing import Any, Iterator

from dataset_ingest.utils.logging import get_logger, log_event

LOGGER = get_logger("dataset_ingest.metrics")

METRIC_PREFIX = "ingest."


def metric_name(event: str) -> str:
    return event if event.startswith(METRIC_PREFIX) else f"{METRIC_PREFIX}{event}"


def emit_ingest_metric(event: str, **fields: Any) -> dict[str, Any]:
    """Log a counter-style metric and return the payload that was written."""
    return _emit(metric_name(event), fields)


def timing_payload(event: str, *, elapsed_ms: float, **fields: Any) -> dict[str, Any]:
    return {
        "event": f"{metric_name(event)}.timing",
        "elapsed_ms": elapsed_ms,
        "timestamp": datetime.now(UTC).isoformat(),
        **fields,
    }


def emit_ingest_timing(event: str, *, elapsed_ms: float, **fields: Any) -> dict[str, Any]:
    payload = timing_payload(event, elapsed_ms=elapsed_ms, **fields)
    name = payload.pop("event")
    log_event(LOGGER, name, **payload)
    return {"event": name, **payload}


@contextmanager
def measure_ingest(event: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Time the block and emit one timing metric tagged with its outcome.

    Failures are tagged ``outcome="error"`` plus ``error_kind`` (the ``kind`` of a
    dataset error, or the exception class name) and re-raised unchanged.
    """
    extra: dict[str, Any] = dict(fields)
    start = perf_counter()
    try:
        yield extra
    except Exception as error:
        extra["outcome"] = "error"
        extra["error_kind"] = getattr(error, "kind", type(error).__name__)
        raise
    else:
        extra["outcome"] = "success"
    finally:
        emit_ingest_timing(event, elapsed_ms=(perf_counter() - start) * 1000, **extra)


def _emit(name: str, fields: dict[str, Any]) -> dict[str, Any]:
    payload = {"timestamp": datetime.now(UTC).isoformat(), **fields}
    log_event(LOGGER, name, **payload)
    return {"event": name, **payload}
