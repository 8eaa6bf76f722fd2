from __future__ import annotations

import os
from pathlib import Path

import uvicorn

from dataset_ingest.api.router import create_app
from dataset_ingest.utils.config import get_data_root, get_upload_root
from dataset_ingest.utils.logging import configure_logging

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def prepare_data_directories() -> Path:
    data_root = get_data_root()
    logs_dir = Path(os.getenv("DATASET_LOG_DIR", data_root / "logs")).expanduser()

    _ensure_directory(data_root)
    _ensure_directory(get_upload_root(data_root))
    _ensure_directory(logs_dir)
    return data_root


def build_app():
    data_root = prepare_data_directories()
    logs_dir = Path(os.getenv("DATASET_LOG_DIR", data_root / "logs")).expanduser()
    configure_logging(log_path=logs_dir / "datasets.log")
    return create_app()


def run() -> None:
    host = os.getenv("DATASET_API_HOST", DEFAULT_HOST)
    port = int(os.getenv("DATASET_API_PORT", DEFAULT_PORT))
    uvicorn.run(build_app(), host=host, port=port)


if __name__ == "__main__":
    run()
