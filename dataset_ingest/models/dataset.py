from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dataset_ingest.db.schema import Dataset
from dataset_ingest.services.refresh_utils import SyncChanges


class ImportSheetRequest(BaseModel):
    sheet_url: Annotated[str, Field(alias="sheetUrl")]

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sheet_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return value.strip()


class UploadResponse(BaseModel):
    dataset_id: Annotated[str, Field(alias="datasetId")]
    name: str
    row_count: Annotated[int, Field(alias="rowCount")]
    headers: list[str]

    model_config = ConfigDict(populate_by_name=True)


class DatasetSummary(BaseModel):
    dataset_id: Annotated[str, Field(alias="datasetId")]
    name: str
    source: str
    sheet_url: Annotated[str | None, Field(alias="sheetUrl", default=None)]
    headers: list[str]
    row_count: Annotated[int, Field(alias="rowCount")]
    uploaded_at: Annotated[datetime, Field(alias="uploadedAt")]
    last_synced_at: Annotated[datetime, Field(alias="lastSyncedAt")]
    sync_count: Annotated[int | None, Field(alias="syncCount", default=None)]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, dataset: Dataset) -> "DatasetSummary":
        return cls(
            dataset_id=dataset.id,
            name=dataset.name,
            source=dataset.source.value,
            sheet_url=dataset.sheet_url,
            headers=list(dataset.headers),
            row_count=dataset.row_count,
            uploaded_at=dataset.uploaded_at,
            last_synced_at=dataset.last_synced_at,
            sync_count=dataset.sync_count,
        )


class DatasetDetail(DatasetSummary):
    rows: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_record(cls, dataset: Dataset) -> "DatasetDetail":
        summary = DatasetSummary.from_record(dataset)
        return cls(**summary.model_dump(), rows=list(dataset.rows))


class DatasetListResponse(BaseModel):
    count: int
    datasets: list[DatasetSummary]


class ChangesPayload(BaseModel):
    previous_row_count: Annotated[int, Field(alias="previousRowCount")]
    current_row_count: Annotated[int, Field(alias="currentRowCount")]
    rows_changed: Annotated[int, Field(alias="rowsChanged")]
    headers_changed: Annotated[bool, Field(alias="headersChanged")]
    change_type: Annotated[str, Field(alias="changeType")]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_changes(cls, changes: SyncChanges) -> "ChangesPayload":
        return cls.model_validate(changes.to_payload())


class SheetImportResponse(BaseModel):
    dataset_id: Annotated[str, Field(alias="datasetId")]
    name: str
    sheet_url: Annotated[str, Field(alias="sheetUrl")]
    row_count: Annotated[int, Field(alias="rowCount")]
    headers: list[str]
    is_update: Annotated[bool, Field(alias="isUpdate")]
    sync_count: Annotated[int, Field(alias="syncCount")]
    last_synced_at: Annotated[datetime, Field(alias="lastSyncedAt")]
    changes: ChangesPayload | None = None

    model_config = ConfigDict(populate_by_name=True)


class SheetSyncResponse(BaseModel):
    dataset_id: Annotated[str, Field(alias="datasetId")]
    sheet_url: Annotated[str, Field(alias="sheetUrl")]
    row_count: Annotated[int, Field(alias="rowCount")]
    headers: list[str]
    sync_count: Annotated[int, Field(alias="syncCount")]
    last_synced_at: Annotated[datetime, Field(alias="lastSyncedAt")]
    changes: ChangesPayload

    model_config = ConfigDict(populate_by_name=True)


class SheetListResponse(BaseModel):
    total: int
    sheets: list[DatasetSummary]


class DeleteResponse(BaseModel):
    deleted: bool
