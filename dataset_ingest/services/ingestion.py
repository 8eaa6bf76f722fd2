from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePath

from dataset_ingest.db.metadata import DatasetRepository
from dataset_ingest.db.schema import DatasetSource
from dataset_ingest.services.errors import FileTooLarge, UnsupportedFormat
from dataset_ingest.services.tabular_parser import (
    ParserConfig,
    format_from_filename,
    parse,
)
from dataset_ingest.utils.config import IngestConfig, load_ingest_config
from dataset_ingest.utils.logging import get_logger, log_event, log_timing
from dataset_ingest.utils.metrics import measure_ingest

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class IngestResult:
    dataset_id: str
    name: str
    row_count: int
    headers: list[str]


def source_for_format(fmt: str) -> DatasetSource:
    return DatasetSource.CSV if fmt == "csv" else DatasetSource.SPREADSHEET_FILE


class IngestionService:
    """Validate, parse and persist uploaded tabular files."""

    def __init__(
        self,
        repository: DatasetRepository,
        config: IngestConfig | None = None,
        *,
        parser_config: ParserConfig | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or load_ingest_config()
        self.parser_config = parser_config

    def validate_upload(self, file_name: str, size: int) -> str:
        """Return the parser format for ``file_name`` or raise before any storage is touched."""
        if not file_name or not file_name.strip():
            raise UnsupportedFormat("Uploaded file has no name.")
        fmt = format_from_filename(file_name)
        if fmt not in self.config.allowed_types:
            raise UnsupportedFormat(
                f"Unsupported file type for {file_name}. Allowed: {', '.join(self.config.allowed_types)}."
            )
        if size > self.config.max_bytes:
            raise FileTooLarge(f"File too large: {size} > {self.config.max_bytes} bytes.")
        return fmt

    def ingest_upload(self, owner_id: str, file_bytes: bytes, file_name: str) -> IngestResult:
        fmt = self.validate_upload(file_name, len(file_bytes))
        name = PurePath(file_name).name

        with measure_ingest("upload", owner_id=owner_id, format=fmt, size_bytes=len(file_bytes)) as metric:
            self.config.upload_root.mkdir(parents=True, exist_ok=True)
            temp_path: Path | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    delete=False,
                    dir=self.config.upload_root,
                    suffix=f".{fmt}",
                ) as tmp_file:
                    temp_path = Path(tmp_file.name)
                    tmp_file.write(file_bytes)

                with log_timing(LOGGER, "ingest.parse", file_name=name, format=fmt) as timing:
                    table = parse(temp_path.read_bytes(), fmt, self.parser_config)
                    timing["row_count"] = table.row_count
                dataset = self.repository.create(
                    owner_id,
                    source_for_format(fmt),
                    table.headers,
                    table.rows,
                    name=name,
                )
            finally:
                if temp_path is not None:
                    temp_path.unlink(missing_ok=True)

            metric["dataset_id"] = dataset.id
            metric["row_count"] = dataset.row_count

        log_event(
            LOGGER,
            "ingest.upload.stored",
            dataset_id=dataset.id,
            owner_id=owner_id,
            row_count=dataset.row_count,
            column_count=len(dataset.headers),
        )
        return IngestResult(
            dataset_id=dataset.id,
            name=dataset.name,
            row_count=dataset.row_count,
            headers=list(dataset.headers),
        )
