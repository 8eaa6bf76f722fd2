from __future__ import annotations

import os
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import Select, create_engine, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dataset_ingest.db.schema import Base, Dataset, DatasetSource, utcnow
from dataset_ingest.services.cache import DatasetCache
from dataset_ingest.services.errors import (
    EmptyDataset,
    InvalidOperation,
    NotFound,
    PersistenceFailure,
    SheetAlreadyTracked,
)
from dataset_ingest.services.tabular_parser import EMPTY_VALUE
from dataset_ingest.utils.logging import get_logger, log_event

DEFAULT_SQLITE_URL = "sqlite:///data/datasets.db"

LOGGER = get_logger(__name__)


def _resolve_sqlite_url(url: str | None = None) -> str:
    resolved = url or os.getenv("SQLITE_URL", DEFAULT_SQLITE_URL)
    if resolved.startswith("sqlite:///"):
        db_path = Path(resolved.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def build_engine(url: str | None = None) -> Engine:
    resolved = _resolve_sqlite_url(url)
    connect_args = {"check_same_thread": False} if resolved.startswith("sqlite") else {}
    return create_engine(resolved, future=True, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True)


def init_database(engine: Engine) -> None:
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def normalize_rows(
    headers: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Project every row onto ``headers`` so each header is present in each row."""
    normalized: list[dict[str, Any]] = []
    for row in rows:
        normalized.append(
            {
                header: EMPTY_VALUE if row.get(header) is None else row[header]
                for header in headers
            }
        )
    return normalized


def _next_sync_time(previous: datetime | None) -> datetime:
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


class DatasetRepository:
    """Owner-scoped persistence for ``Dataset`` records.

    Every read and write filters on ``owner_id``; a dataset owned by someone else
    is reported exactly like a missing one. Mutating calls commit their own unit
    of work so a successful return means the change is durable.
    """

    def __init__(self, session: Session, *, cache: DatasetCache | None = None) -> None:
        self.session = session
        self.cache = cache

    # Reads -------------------------------------------------------------
    def find_by_id(self, owner_id: str, dataset_id: str) -> Dataset:
        stmt: Select[tuple[Dataset]] = select(Dataset).where(
            Dataset.id == dataset_id,
            Dataset.owner_id == owner_id,
        )
        with self._store_errors("find_by_id"):
            dataset = self.session.execute(stmt).scalars().first()
        if dataset is None:
            raise NotFound()
        return dataset

    def find_remote_sheet(self, owner_id: str, sheet_url: str) -> Dataset | None:
        stmt: Select[tuple[Dataset]] = (
            select(Dataset)
            .where(
                Dataset.owner_id == owner_id,
                Dataset.sheet_url == sheet_url,
                Dataset.source == DatasetSource.REMOTE_SHEET,
            )
            .order_by(Dataset.uploaded_at.asc())
        )
        with self._store_errors("find_remote_sheet"):
            return self.session.execute(stmt).scalars().first()

    def list_by_owner(self, owner_id: str) -> Sequence[Dataset]:
        stmt: Select[tuple[Dataset]] = (
            select(Dataset)
            .where(Dataset.owner_id == owner_id)
            .order_by(Dataset.uploaded_at.desc())
        )
        with self._store_errors("list_by_owner"):
            return self.session.execute(stmt).scalars().all()

    def list_remote_sheets(self, owner_id: str) -> Sequence[Dataset]:
        stmt: Select[tuple[Dataset]] = (
            select(Dataset)
            .where(
                Dataset.owner_id == owner_id,
                Dataset.source == DatasetSource.REMOTE_SHEET,
            )
            .order_by(Dataset.last_synced_at.desc())
        )
        with self._store_errors("list_remote_sheets"):
            return self.session.execute(stmt).scalars().all()

    # Writes ------------------------------------------------------------
    def create(
        self,
        owner_id: str,
        source: DatasetSource,
        headers: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
        *,
        name: str,
        sheet_url: str | None = None,
    ) -> Dataset:
        if not headers or not rows:
            raise EmptyDataset("Refusing to store a dataset without headers or rows.")
        if source == DatasetSource.REMOTE_SHEET and not sheet_url:
            raise InvalidOperation("Remote sheet datasets require a sheet URL.")
        if source != DatasetSource.REMOTE_SHEET and sheet_url:
            raise InvalidOperation("Only remote sheet datasets may carry a sheet URL.")

        created_at = utcnow()
        dataset = Dataset(
            owner_id=owner_id,
            name=name,
            source=source,
            sheet_url=sheet_url,
            headers=list(headers),
            rows=normalize_rows(headers, rows),
            uploaded_at=created_at,
            last_synced_at=created_at,
            sync_count=1 if source == DatasetSource.REMOTE_SHEET else None,
        )
        with self._store_errors("create"):
            self.session.add(dataset)
            try:
                self.session.commit()
            except IntegrityError as error:
                self.session.rollback()
                if sheet_url is None:
                    raise
                raise SheetAlreadyTracked() from error
        log_event(
            LOGGER,
            "dataset.created",
            dataset_id=dataset.id,
            owner_id=owner_id,
            source=source.value,
            row_count=dataset.row_count,
        )
        return dataset

    def replace_content(
        self,
        owner_id: str,
        dataset_id: str,
        headers: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
    ) -> Dataset:
        """Overwrite headers and rows in one UPDATE statement and bump the sync counters."""
        if not headers or not rows:
            raise EmptyDataset("Refusing to replace dataset content with an empty table.")
        dataset = self.find_by_id(owner_id, dataset_id)
        normalized = normalize_rows(headers, rows)

        stmt = (
            update(Dataset)
            .where(Dataset.id == dataset_id, Dataset.owner_id == owner_id)
            .values(
                headers=list(headers),
                rows=normalized,
                row_count=len(normalized),
                last_synced_at=_next_sync_time(dataset.last_synced_at),
                sync_count=func.coalesce(Dataset.sync_count, 0) + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with self._store_errors("replace_content"):
            result = self.session.execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                raise NotFound()
            self.session.commit()
            self.session.refresh(dataset)
        self._invalidate(owner_id, dataset_id)
        log_event(
            LOGGER,
            "dataset.content_replaced",
            dataset_id=dataset_id,
            owner_id=owner_id,
            row_count=dataset.row_count,
            sync_count=dataset.sync_count,
        )
        return dataset

    def delete(
        self,
        owner_id: str,
        dataset_id: str,
        *,
        source: DatasetSource | None = None,
    ) -> bool:
        stmt = delete(Dataset).where(Dataset.id == dataset_id, Dataset.owner_id == owner_id)
        if source is not None:
            stmt = stmt.where(Dataset.source == source)
        with self._store_errors("delete"):
            result = self.session.execute(stmt.execution_options(synchronize_session=False))
            self.session.commit()
        self._invalidate(owner_id, dataset_id)
        deleted = result.rowcount > 0
        if deleted:
            log_event(LOGGER, "dataset.deleted", dataset_id=dataset_id, owner_id=owner_id)
        return deleted

    # Helpers -----------------------------------------------------------
    def _invalidate(self, owner_id: str, dataset_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(owner_id, dataset_id)

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as error:
            self.session.rollback()
            LOGGER.exception("Dataset store %s failed: %s", operation, error)
            raise PersistenceFailure(f"Dataset store {operation} failed.") from error
