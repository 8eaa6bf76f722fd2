from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from dataset_ingest.api.router import create_app
from dataset_ingest.services.cache import DatasetCache
from dataset_ingest.services.sheet_fetcher import SheetFetcher
from dataset_ingest.utils.config import IngestConfig, SyncConfig
from tests.fixtures.tables.factory import csv_bytes, workbook_bytes

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def client(
    sqlite_url: str,
    sheet_fetcher: SheetFetcher,
    ingest_config: IngestConfig,
    sync_config: SyncConfig,
) -> Iterator[TestClient]:
    app = create_app(
        database_url=sqlite_url,
        sheet_fetcher=sheet_fetcher,
        cache=DatasetCache(ttl_seconds=60),
        ingest_config=ingest_config,
        sync_config=sync_config,
    )
    with TestClient(app) as test_client:
        yield test_client


def _upload(client: TestClient, content: bytes, file_name: str, headers=ALICE):
    return client.post(
        "/datasets/upload",
        files={"file": (file_name, content, "application/octet-stream")},
        headers=headers,
    )


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_upload_list_get_delete_flow(client: TestClient) -> None:
    upload = _upload(client, b"name,age\nAda,30\nLin,25\n", "people.csv")

    assert upload.status_code == 201
    payload = upload.json()
    assert payload["name"] == "people.csv"
    assert payload["rowCount"] == 2
    assert payload["headers"] == ["name", "age"]
    dataset_id = payload["datasetId"]

    listing = client.get("/datasets", headers=ALICE)
    assert listing.status_code == 200
    body = listing.json()
    assert body["count"] == 1
    summary = body["datasets"][0]
    assert summary["datasetId"] == dataset_id
    assert summary["source"] == "csv"
    assert summary["syncCount"] is None
    assert "rows" not in summary

    detail = client.get(f"/datasets/{dataset_id}", headers=ALICE)
    assert detail.status_code == 200
    assert detail.json()["rows"] == [{"name": "Ada", "age": 30}, {"name": "Lin", "age": 25}]

    deleted = client.delete(f"/datasets/{dataset_id}", headers=ALICE)
    assert deleted.status_code == 200
    assert deleted.json() == {"deleted": True}

    missing = client.get(f"/datasets/{dataset_id}", headers=ALICE)
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFound"
    assert client.delete(f"/datasets/{dataset_id}", headers=ALICE).status_code == 404


def test_upload_workbook(client: TestClient) -> None:
    response = _upload(client, workbook_bytes(), "regions.xlsx")

    assert response.status_code == 201
    dataset_id = response.json()["datasetId"]
    detail = client.get(f"/datasets/{dataset_id}", headers=ALICE).json()
    assert detail["source"] == "spreadsheet-file"
    assert detail["rows"][0] == {"region": "north", "category": "hardware", "revenue": 125000}


def test_other_tenants_see_not_found(client: TestClient) -> None:
    dataset_id = _upload(client, csv_bytes(), "budget.csv").json()["datasetId"]

    foreign = client.get(f"/datasets/{dataset_id}", headers=BOB)
    absent = client.get("/datasets/unknown-id", headers=BOB)

    assert foreign.status_code == absent.status_code == 404
    assert foreign.json() == absent.json()
    assert client.get("/datasets", headers=BOB).json() == {"count": 0, "datasets": []}
    assert client.delete(f"/datasets/{dataset_id}", headers=BOB).status_code == 404
    assert client.get(f"/datasets/{dataset_id}", headers=ALICE).status_code == 200


@pytest.mark.parametrize(
    ("content", "file_name", "status_code", "kind"),
    [
        (b"name,age\n", "empty.csv", 400, "EmptyDataset"),
        (b"", "empty.csv", 400, "EmptyDataset"),
        (b"a,b\n1,2\n", "notes.txt", 400, "UnsupportedFormat"),
        (b"not a workbook", "broken.xlsx", 400, "UnsupportedFormat"),
    ],
)
def test_upload_errors_use_error_kinds(
    client: TestClient, content: bytes, file_name: str, status_code: int, kind: str
) -> None:
    response = _upload(client, content, file_name)

    assert response.status_code == status_code
    assert response.json()["error"] == kind
    assert response.json()["message"]
    assert client.get("/datasets", headers=ALICE).json()["count"] == 0


def test_upload_too_large(
    sqlite_url: str,
    sheet_fetcher: SheetFetcher,
    ingest_config: IngestConfig,
    sync_config: SyncConfig,
) -> None:
    app = create_app(
        database_url=sqlite_url,
        sheet_fetcher=sheet_fetcher,
        ingest_config=IngestConfig(
            upload_root=ingest_config.upload_root,
            max_bytes=32,
            allowed_types=ingest_config.allowed_types,
        ),
        sync_config=sync_config,
    )
    with TestClient(app) as client:
        response = _upload(client, csv_bytes(), "budget.csv")

    assert response.status_code == 413
    assert response.json()["error"] == "FileTooLarge"


def test_requests_without_identity_are_rejected(client: TestClient) -> None:
    assert client.get("/datasets").status_code == 401
    assert _upload(client, csv_bytes(), "budget.csv", headers={}).status_code == 401


def test_custom_identity_resolver(
    sqlite_url: str,
    sheet_fetcher: SheetFetcher,
    ingest_config: IngestConfig,
    sync_config: SyncConfig,
) -> None:
    app = create_app(
        database_url=sqlite_url,
        sheet_fetcher=sheet_fetcher,
        identity_resolver=lambda request: "service-account",
        ingest_config=ingest_config,
        sync_config=sync_config,
    )
    with TestClient(app) as client:
        created = _upload(client, csv_bytes(), "budget.csv", headers={})
        listing = client.get("/datasets")

    assert created.status_code == 201
    assert listing.json()["count"] == 1
