from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DATA_ROOT = Path("./data")
DEFAULT_UPLOAD_SUBDIR = "uploads"
DEFAULT_EXPORT_URL_TEMPLATE = (
    "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv"
)
INGEST_MAX_BYTES_ENV = "INGEST_MAX_BYTES"
INGEST_ALLOWED_TYPES_ENV = "INGEST_ALLOWED_TYPES"
INGEST_UPLOAD_SUBDIR_ENV = "INGEST_UPLOAD_SUBDIR"
EXPORT_URL_TEMPLATE_ENV = "SHEET_EXPORT_URL_TEMPLATE"
FETCH_TIMEOUT_ENV = "SHEET_FETCH_TIMEOUT"
PARSE_TIMEOUT_ENV = "SHEET_PARSE_TIMEOUT"
CACHE_TTL_ENV = "DATASET_CACHE_TTL"
CACHE_MAX_ENTRIES_ENV = "DATASET_CACHE_MAX_ENTRIES"


@dataclass(frozen=True)
class IngestConfig:
    upload_root: Path
    max_bytes: int
    allowed_types: tuple[str, ...]


@dataclass(frozen=True)
class SyncConfig:
    export_url_template: str
    fetch_timeout_seconds: float
    parse_timeout_seconds: float


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float
    max_entries: int


def get_data_root() -> Path:
    return Path(os.getenv("DATA_ROOT", DEFAULT_DATA_ROOT)).expanduser()


def get_upload_root(data_root: Path | None = None) -> Path:
    root = data_root if data_root is not None else get_data_root()
    subdir = os.getenv(INGEST_UPLOAD_SUBDIR_ENV) or DEFAULT_UPLOAD_SUBDIR
    return (root / subdir).expanduser()


def load_ingest_config(data_root: Path | None = None) -> IngestConfig:
    max_bytes_default = 100 * 1024 * 1024
    max_bytes = int(os.getenv(INGEST_MAX_BYTES_ENV, max_bytes_default))
    allowed_env = os.getenv(INGEST_ALLOWED_TYPES_ENV)
    if allowed_env:
        allowed_types = tuple(
            part.strip().lower().lstrip(".") for part in allowed_env.split(",") if part.strip()
        )
    else:
        allowed_types = ("csv", "xlsx", "xls")
    return IngestConfig(
        upload_root=get_upload_root(data_root),
        max_bytes=max_bytes,
        allowed_types=allowed_types,
    )


def load_sync_config() -> SyncConfig:
    return SyncConfig(
        export_url_template=os.getenv(EXPORT_URL_TEMPLATE_ENV) or DEFAULT_EXPORT_URL_TEMPLATE,
        fetch_timeout_seconds=float(os.getenv(FETCH_TIMEOUT_ENV, 20)),
        parse_timeout_seconds=float(os.getenv(PARSE_TIMEOUT_ENV, 30)),
    )


def load_cache_config() -> CacheConfig:
    return CacheConfig(
        ttl_seconds=float(os.getenv(CACHE_TTL_ENV, 0)),
        max_entries=int(os.getenv(CACHE_MAX_ENTRIES_ENV, 256)),
    )
