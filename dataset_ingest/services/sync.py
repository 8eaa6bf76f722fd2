from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime

from dataset_ingest.db.metadata import DatasetRepository
from dataset_ingest.db.schema import Dataset, DatasetSource
from dataset_ingest.services.errors import InvalidOperation, ParseTimeout, SheetAlreadyTracked
from dataset_ingest.services.refresh_utils import SyncChanges, compute_changes
from dataset_ingest.services.sheet_fetcher import SheetFetcher, extract_spreadsheet_id
from dataset_ingest.services.tabular_parser import ParsedTable, ParserConfig, parse
from dataset_ingest.utils.config import SyncConfig, load_sync_config
from dataset_ingest.utils.logging import get_logger, log_event, log_timing
from dataset_ingest.utils.metrics import measure_ingest

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ImportResult:
    dataset_id: str
    name: str
    sheet_url: str
    row_count: int
    headers: list[str]
    is_update: bool
    sync_count: int
    last_synced_at: datetime
    changes: SyncChanges | None = None


@dataclass(frozen=True)
class SyncResult:
    dataset_id: str
    sheet_url: str
    row_count: int
    headers: list[str]
    sync_count: int
    last_synced_at: datetime
    changes: SyncChanges


class SyncService:
    """Import shared spreadsheets and re-pull them on demand.

    Fetch and parse both complete before the store is touched, so any failure on
    the way leaves the stored dataset exactly as it was.
    """

    def __init__(
        self,
        repository: DatasetRepository,
        fetcher: SheetFetcher,
        config: SyncConfig | None = None,
        *,
        parser_config: ParserConfig | None = None,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.config = config or load_sync_config()
        self.parser_config = parser_config

    def import_from_url(self, owner_id: str, sheet_url: str) -> ImportResult:
        sheet_url = (sheet_url or "").strip()
        extract_spreadsheet_id(sheet_url)

        with measure_ingest("sheet_import", owner_id=owner_id) as metric:
            table = self._fetch_table(sheet_url)
            existing = self.repository.find_remote_sheet(owner_id, sheet_url)

            changes: SyncChanges | None = None
            if existing is None:
                try:
                    dataset = self.repository.create(
                        owner_id,
                        DatasetSource.REMOTE_SHEET,
                        table.headers,
                        table.rows,
                        name=sheet_url,
                        sheet_url=sheet_url,
                    )
                except SheetAlreadyTracked:
                    # A concurrent import created the record first.
                    existing = self.repository.find_remote_sheet(owner_id, sheet_url)
                    if existing is None:
                        raise
            if existing is not None:
                dataset, changes = self._update_existing(owner_id, existing, table)
            metric["dataset_id"] = dataset.id
            metric["is_update"] = changes is not None

        log_event(
            LOGGER,
            "sheet.imported",
            dataset_id=dataset.id,
            owner_id=owner_id,
            is_update=changes is not None,
            row_count=dataset.row_count,
        )
        return ImportResult(
            dataset_id=dataset.id,
            name=dataset.name,
            sheet_url=sheet_url,
            row_count=dataset.row_count,
            headers=list(dataset.headers),
            is_update=changes is not None,
            sync_count=dataset.sync_count or 1,
            last_synced_at=dataset.last_synced_at,
            changes=changes,
        )

    def resync(self, owner_id: str, dataset_id: str) -> SyncResult:
        existing = self.repository.find_by_id(owner_id, dataset_id)
        sheet_url = self._require_sheet_url(existing)
        previous_headers = list(existing.headers)
        previous_row_count = existing.row_count

        with measure_ingest("sheet_resync", owner_id=owner_id, dataset_id=dataset_id) as metric:
            table = self._fetch_table(sheet_url)
            dataset = self.repository.replace_content(
                owner_id, dataset_id, table.headers, table.rows
            )
            changes = compute_changes(
                previous_headers,
                previous_row_count,
                dataset.headers,
                dataset.row_count,
            )
            metric["rows_changed"] = changes.rows_changed
            metric["sync_count"] = dataset.sync_count

        log_event(
            LOGGER,
            "sheet.resynced",
            dataset_id=dataset_id,
            owner_id=owner_id,
            change_type=changes.change_type,
            headers_changed=changes.headers_changed,
        )
        return SyncResult(
            dataset_id=dataset.id,
            sheet_url=sheet_url,
            row_count=dataset.row_count,
            headers=list(dataset.headers),
            sync_count=dataset.sync_count or 1,
            last_synced_at=dataset.last_synced_at,
            changes=changes,
        )

    # ---- helpers ----
    def _update_existing(
        self, owner_id: str, existing: Dataset, table: ParsedTable
    ) -> tuple[Dataset, SyncChanges]:
        previous_headers = list(existing.headers)
        previous_row_count = existing.row_count
        dataset = self.repository.replace_content(
            owner_id, existing.id, table.headers, table.rows
        )
        changes = compute_changes(
            previous_headers,
            previous_row_count,
            dataset.headers,
            dataset.row_count,
            signed=False,
        )
        return dataset, changes

    def _require_sheet_url(self, dataset: Dataset) -> str:
        if not dataset.is_remote or not dataset.sheet_url:
            raise InvalidOperation("Dataset is not linked to a remote sheet.")
        return dataset.sheet_url

    def _fetch_table(self, sheet_url: str) -> ParsedTable:
        content = self.fetcher.fetch_as_csv(sheet_url)
        limit = self.config.parse_timeout_seconds
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sheet-parse")
        try:
            with log_timing(LOGGER, "sheet.parse", size_bytes=len(content)) as timing:
                future = executor.submit(parse, content, "csv", self.parser_config)
                try:
                    table = future.result(timeout=limit)
                except FutureTimeout as error:
                    future.cancel()
                    raise ParseTimeout(
                        f"Parsing the sheet export exceeded the {limit:g}s limit."
                    ) from error
                timing["row_count"] = table.row_count
        finally:
            # An overrunning parse is abandoned, not joined.
            executor.shutdown(wait=False, cancel_futures=True)
        return table
