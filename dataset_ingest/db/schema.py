from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates
from sqlalchemy.types import JSON, TypeDecorator


def _generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Store naive UTC timestamps and hand back timezone-aware values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Declarative base for dataset store models."""


class DatasetSource(str, enum.Enum):
    CSV = "csv"
    SPREADSHEET_FILE = "spreadsheet-file"
    REMOTE_SHEET = "remote-sheet"


class Dataset(Base):
    __tablename__ = "datasets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    owner_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    source: Mapped[DatasetSource] = mapped_column(
        Enum(
            DatasetSource,
            name="dataset_source",
            values_callable=lambda members: [member.value for member in members],
        )
    )
    sheet_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    headers: Mapped[list[str]] = mapped_column(JSON, default=list)
    rows: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    row_count: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    last_synced_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    sync_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_datasets_owner_uploaded", "owner_id", "uploaded_at"),
        Index("uq_datasets_owner_sheet", "owner_id", "sheet_url", unique=True),
    )

    @validates("rows")
    def _sync_row_count(self, key: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.row_count = len(rows)
        return rows

    @property
    def is_remote(self) -> bool:
        return self.source == DatasetSource.REMOTE_SHEET
