from __future__ import annotations

import pytest

from dataset_ingest.services.errors import FetchFailed
from dataset_ingest.utils import metrics
from dataset_ingest.utils.metrics import emit_ingest_metric, emit_ingest_timing, measure_ingest, timing_payload


def test_emit_ingest_metric_returns_payload() -> None:
    payload = emit_ingest_metric("delete", owner_id="alice", dataset_id="d1")
    assert payload["event"] == "ingest.delete"
    assert payload["owner_id"] == "alice"
    assert payload["dataset_id"] == "d1"
    assert "timestamp" in payload


def test_timing_payload_includes_elapsed() -> None:
    payload = timing_payload("ingest.upload", elapsed_ms=12.5, outcome="success")
    assert payload["event"] == "ingest.upload.timing"
    assert payload["elapsed_ms"] == 12.5


def test_emit_ingest_timing_prefixes_event() -> None:
    payload = emit_ingest_timing("sheet_resync", elapsed_ms=5.0, outcome="success")
    assert payload["event"] == "ingest.sheet_resync.timing"


def _capture(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    calls: list[dict] = []

    def _mock_emit(event: str, *, elapsed_ms: float, **fields) -> dict:
        payload = {"event": event, "elapsed_ms": elapsed_ms, **fields}
        calls.append(payload)
        return payload

    monkeypatch.setattr(metrics, "emit_ingest_timing", _mock_emit)
    return calls


def test_measure_ingest_wraps_block(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _capture(monkeypatch)

    with measure_ingest("upload", owner_id="alice") as extra:
        extra["row_count"] = 3

    assert calls[0]["event"] == "upload"
    assert calls[0]["owner_id"] == "alice"
    assert calls[0]["row_count"] == 3
    assert calls[0]["outcome"] == "success"
    assert calls[0]["elapsed_ms"] >= 0


def test_measure_ingest_records_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _capture(monkeypatch)

    with pytest.raises(RuntimeError):
        with measure_ingest("sheet_import"):
            raise RuntimeError("boom")

    assert calls[0]["outcome"] == "error"
    assert calls[0]["error_kind"] == "RuntimeError"


def test_measure_ingest_tags_dataset_error_kind(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _capture(monkeypatch)

    with pytest.raises(FetchFailed):
        with measure_ingest("sheet_resync", dataset_id="d1"):
            raise FetchFailed("Sheet export returned HTTP 500.")

    assert calls[0]["error_kind"] == "FetchFailed"
    assert calls[0]["dataset_id"] == "d1"
