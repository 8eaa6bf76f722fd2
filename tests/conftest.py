from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from dataset_ingest.db.metadata import (
    DatasetRepository,
    build_engine,
    create_session_factory,
    init_database,
    session_scope,
)
from dataset_ingest.services.cache import DatasetCache
from dataset_ingest.services.sheet_fetcher import SheetFetcher
from dataset_ingest.utils.config import IngestConfig, SyncConfig
from tests.fixtures.tables.remote import EXPORT_TEMPLATE, FakeSheetServer


@pytest.fixture
def temp_data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_root = tmp_path / "data"
    data_root.mkdir()
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    return data_root


@pytest.fixture
def sqlite_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    db_path = tmp_path / "datasets.db"
    url = f"sqlite:///{db_path}"
    monkeypatch.setenv("SQLITE_URL", url)
    return url


@pytest.fixture
def session_factory(sqlite_url: str) -> Iterator[sessionmaker[Session]]:
    engine = build_engine(sqlite_url)
    init_database(engine)
    factory = create_session_factory(engine)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_scope(session_factory) as session:
        yield session


@pytest.fixture
def dataset_cache() -> DatasetCache:
    return DatasetCache(ttl_seconds=60, max_entries=16)


@pytest.fixture
def repository(db_session: Session, dataset_cache: DatasetCache) -> DatasetRepository:
    return DatasetRepository(db_session, cache=dataset_cache)


@pytest.fixture
def ingest_config(temp_data_root: Path) -> IngestConfig:
    return IngestConfig(
        upload_root=temp_data_root / "uploads",
        max_bytes=1024 * 1024,
        allowed_types=("csv", "xlsx", "xls"),
    )


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        export_url_template=EXPORT_TEMPLATE,
        fetch_timeout_seconds=5,
        parse_timeout_seconds=30,
    )


@pytest.fixture
def sheet_server() -> FakeSheetServer:
    return FakeSheetServer()


@pytest.fixture
def sheet_fetcher(sheet_server: FakeSheetServer, sync_config: SyncConfig) -> Iterator[SheetFetcher]:
    fetcher = sheet_server.fetcher(sync_config)
    try:
        yield fetcher
    finally:
        fetcher.client.close()
