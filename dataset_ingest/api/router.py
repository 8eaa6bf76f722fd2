from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from dataset_ingest.db.metadata import (
    DatasetRepository,
    build_engine,
    create_session_factory,
    init_database,
    session_scope,
)
from dataset_ingest.db.schema import DatasetSource
from dataset_ingest.models.dataset import (
    ChangesPayload,
    DatasetDetail,
    DatasetListResponse,
    DatasetSummary,
    DeleteResponse,
    ImportSheetRequest,
    SheetImportResponse,
    SheetListResponse,
    SheetSyncResponse,
    UploadResponse,
)
from dataset_ingest.services.cache import DatasetCache
from dataset_ingest.services.errors import DatasetError, NotFound
from dataset_ingest.services.ingestion import IngestionService
from dataset_ingest.services.sheet_fetcher import SheetFetcher
from dataset_ingest.services.sync import SyncService
from dataset_ingest.utils.config import (
    IngestConfig,
    SyncConfig,
    load_ingest_config,
    load_sync_config,
)
from dataset_ingest.utils.metrics import emit_ingest_metric

LOGGER = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

IdentityResolver = Callable[[Request], str]


def header_identity(request: Request) -> str:
    """Read the caller's id from ``X-User-Id``; credential checks happen upstream."""
    owner_id = (request.headers.get(USER_HEADER) or "").strip()
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required.")
    return owner_id


def create_app(
    *,
    database_url: str | None = None,
    sheet_fetcher: SheetFetcher | None = None,
    identity_resolver: IdentityResolver | None = None,
    cache: DatasetCache | None = None,
    ingest_config: IngestConfig | None = None,
    sync_config: SyncConfig | None = None,
) -> FastAPI:
    """Create a FastAPI instance exposing dataset upload and sheet sync endpoints."""
    resolved_sync_config = sync_config or load_sync_config()
    resolved_ingest_config = ingest_config or load_ingest_config()
    fetcher = sheet_fetcher or SheetFetcher(resolved_sync_config)
    dataset_cache = cache or DatasetCache.from_config()
    resolve_identity = identity_resolver or header_identity

    engine = build_engine(database_url)
    init_database(engine)
    SessionFactory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if sheet_fetcher is None:
                fetcher.close()
            engine.dispose()

    app = FastAPI(
        title="Dataset Ingestion API",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(DatasetError)
    async def handle_dataset_error(_: Request, error: DatasetError) -> JSONResponse:
        LOGGER.info("Request failed with %s: %s", error.kind, error.message)
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    def get_owner_id(request: Request) -> str:
        return resolve_identity(request)

    def get_repository() -> Iterator[DatasetRepository]:
        with session_scope(SessionFactory) as session:
            yield DatasetRepository(session, cache=dataset_cache)

    def get_ingestion_service(
        repo: DatasetRepository = Depends(get_repository),
    ) -> IngestionService:
        return IngestionService(repo, resolved_ingest_config)

    def get_sync_service(
        repo: DatasetRepository = Depends(get_repository),
    ) -> SyncService:
        return SyncService(repo, fetcher, resolved_sync_config)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/datasets/upload", status_code=status.HTTP_201_CREATED)
    async def upload_dataset(
        file: Annotated[UploadFile, File(...)],
        owner_id: str = Depends(get_owner_id),
        ingestion_service: IngestionService = Depends(get_ingestion_service),
    ) -> dict[str, object]:
        file_name = file.filename or ""
        if file.size is not None:
            ingestion_service.validate_upload(file_name, file.size)
        contents = await file.read()
        result = ingestion_service.ingest_upload(owner_id, contents, file_name)
        return UploadResponse(
            dataset_id=result.dataset_id,
            name=result.name,
            row_count=result.row_count,
            headers=result.headers,
        ).model_dump(by_alias=True, mode="json")

    @app.get("/datasets")
    def list_datasets(
        owner_id: str = Depends(get_owner_id),
        repo: DatasetRepository = Depends(get_repository),
    ) -> dict[str, object]:
        datasets = [DatasetSummary.from_record(item) for item in repo.list_by_owner(owner_id)]
        return DatasetListResponse(count=len(datasets), datasets=datasets).model_dump(
            by_alias=True, mode="json"
        )

    @app.get("/datasets/{dataset_id}")
    def get_dataset(
        dataset_id: str,
        owner_id: str = Depends(get_owner_id),
        repo: DatasetRepository = Depends(get_repository),
    ) -> dict[str, object]:
        generation = dataset_cache.generation(owner_id, dataset_id)
        cached = dataset_cache.get(owner_id, dataset_id)
        if cached is not None:
            return cached
        payload = DatasetDetail.from_record(repo.find_by_id(owner_id, dataset_id)).model_dump(
            by_alias=True, mode="json"
        )
        dataset_cache.put(owner_id, dataset_id, payload, generation=generation)
        return payload

    @app.delete("/datasets/{dataset_id}")
    def delete_dataset(
        dataset_id: str,
        owner_id: str = Depends(get_owner_id),
        repo: DatasetRepository = Depends(get_repository),
    ) -> dict[str, object]:
        if not repo.delete(owner_id, dataset_id):
            raise NotFound()
        emit_ingest_metric("delete", owner_id=owner_id, dataset_id=dataset_id)
        return DeleteResponse(deleted=True).model_dump()

    @app.post("/sheets/import")
    def import_sheet(
        payload: ImportSheetRequest,
        response: Response,
        owner_id: str = Depends(get_owner_id),
        sync_service: SyncService = Depends(get_sync_service),
    ) -> dict[str, object]:
        result = sync_service.import_from_url(owner_id, payload.sheet_url)
        response.status_code = status.HTTP_200_OK if result.is_update else status.HTTP_201_CREATED
        return SheetImportResponse(
            dataset_id=result.dataset_id,
            name=result.name,
            sheet_url=result.sheet_url,
            row_count=result.row_count,
            headers=result.headers,
            is_update=result.is_update,
            sync_count=result.sync_count,
            last_synced_at=result.last_synced_at,
            changes=ChangesPayload.from_changes(result.changes) if result.changes else None,
        ).model_dump(by_alias=True, mode="json")

    @app.put("/sheets/{dataset_id}/refresh")
    def refresh_sheet(
        dataset_id: str,
        owner_id: str = Depends(get_owner_id),
        sync_service: SyncService = Depends(get_sync_service),
    ) -> dict[str, object]:
        result = sync_service.resync(owner_id, dataset_id)
        return SheetSyncResponse(
            dataset_id=result.dataset_id,
            sheet_url=result.sheet_url,
            row_count=result.row_count,
            headers=result.headers,
            sync_count=result.sync_count,
            last_synced_at=result.last_synced_at,
            changes=ChangesPayload.from_changes(result.changes),
        ).model_dump(by_alias=True, mode="json")

    @app.get("/sheets")
    def list_sheets(
        owner_id: str = Depends(get_owner_id),
        repo: DatasetRepository = Depends(get_repository),
    ) -> dict[str, object]:
        sheets = [DatasetSummary.from_record(item) for item in repo.list_remote_sheets(owner_id)]
        return SheetListResponse(total=len(sheets), sheets=sheets).model_dump(
            by_alias=True, mode="json"
        )

    @app.delete("/sheets/{dataset_id}")
    def delete_sheet(
        dataset_id: str,
        owner_id: str = Depends(get_owner_id),
        repo: DatasetRepository = Depends(get_repository),
    ) -> dict[str, object]:
        if not repo.delete(owner_id, dataset_id, source=DatasetSource.REMOTE_SHEET):
            raise NotFound("Sheet not found.")
        emit_ingest_metric("sheet_delete", owner_id=owner_id, dataset_id=dataset_id)
        return DeleteResponse(deleted=True).model_dump()

    return app
