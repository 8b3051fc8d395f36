from __future__ import annotations

import logging
import pathlib
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import Settings, get_settings
from app.errors import AssemblyError, ServiceError, UploadError, ValidationError
from app.models.api import (
    AssemblyRequest,
    AssemblyResponse,
    CleanupResponse,
    DuplicateCheckResponse,
    RecordRequest,
    RecordResponse,
    UploadRequest,
    UploadResponse,
)
from app.services.assembly_service import AssemblyService
from app.services.upload_service import UploadService
from app.storage.repository import PublishLedgerRepository
from app.storage.workspace import WorkspaceManager
from app.workers.sweeper import WorkspaceSweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger(__name__)

_settings = get_settings()
_workspaces = WorkspaceManager(_settings.workspace_root, lease_ttl_minutes=_settings.lease_ttl_minutes)
_workspaces.ensure_root()
_assembly: AssemblyService | None = None
_uploads: UploadService | None = None
_ledger: PublishLedgerRepository | None = None


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    sweeper: WorkspaceSweeper | None = None
    if _settings.cleanup_enabled:
        sweeper = WorkspaceSweeper(
            _workspaces,
            interval_minutes=_settings.cleanup_interval_minutes,
            threshold_minutes=_settings.retention_minutes,
        )
        sweeper.start()
    log.info("%s listening on port %s", _settings.app_name, _settings.port)
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


app = FastAPI(title=_settings.app_name, lifespan=lifespan)
app.mount(
    _settings.artifact_path_prefix.rstrip("/") or "/tmp",
    StaticFiles(directory=str(_workspaces.root)),
    name="artifacts",
)


def get_workspace_manager() -> WorkspaceManager:
    return _workspaces


def get_assembly_service(
    settings: Settings = Depends(get_settings),
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> AssemblyService:
    global _assembly
    if _assembly is None:
        _assembly = AssemblyService.from_settings(settings, workspaces)
    return _assembly


def get_upload_service(
    settings: Settings = Depends(get_settings),
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> UploadService:
    global _uploads
    if _uploads is None:
        _uploads = UploadService.from_settings(settings, workspaces)
    return _uploads


def get_ledger(settings: Settings = Depends(get_settings)) -> PublishLedgerRepository:
    global _ledger
    if _ledger is None:
        _ledger = PublishLedgerRepository(settings.ledger_path)
    return _ledger


def public_url(request: Request, settings: Settings, *parts: str) -> str:
    base = settings.public_base_url.rstrip("/") or str(request.base_url).rstrip("/")
    prefix = settings.artifact_path_prefix.strip("/")
    return "/".join([base, prefix, *parts]) if prefix else "/".join([base, *parts])


@app.exception_handler(RequestValidationError)
async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ValidationError.code, "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(ValidationError)
async def handle_validation(_: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(AssemblyError)
async def handle_assembly(_: Request, exc: AssemblyError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(UploadError)
async def handle_upload(_: Request, exc: UploadError) -> JSONResponse:
    log.error("upload error: %s", exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=jsonable_encoder({"error": UploadError.code, "reason": exc.code, "detail": exc.detail}),
    )


@app.exception_handler(ServiceError)
async def handle_service(_: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(Exception)
async def handle_unexpected(_: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled error: %s", exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "detail": str(exc)},
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/.well-known/{path:path}")
def well_known(path: str) -> dict[str, object]:
    return {"ok": True, "path": f"/.well-known/{path}"}


@app.post("/assemble", response_model=AssemblyResponse)
def assemble(
    payload: AssemblyRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    service: AssemblyService = Depends(get_assembly_service),
) -> AssemblyResponse:
    result = service.assemble(payload.images, payload.audio, payload.duration_per_image)
    filename = pathlib.Path(result.output_path).name
    return AssemblyResponse(
        id=result.id,
        output=result.output_path,
        url=public_url(request, settings, result.workspace, filename),
    )


@app.post("/upload", response_model=UploadResponse)
def upload(
    payload: UploadRequest,
    service: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    result = service.upload(
        video_url=payload.video_url,
        access_token=payload.access_token,
        title=payload.title,
        description=payload.description,
        tags=payload.tags,
        privacy_status=payload.privacy_status,
    )
    return UploadResponse(success=True, result=result)


@app.api_route("/cleanup", methods=["GET", "POST"], response_model=CleanupResponse)
def cleanup(
    settings: Settings = Depends(get_settings),
    workspaces: WorkspaceManager = Depends(get_workspace_manager),
) -> CleanupResponse | JSONResponse:
    try:
        removed = workspaces.reclaim(settings.retention_minutes)
    except Exception as exc:
        log.exception("cleanup failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "cleanup_failed", "detail": str(exc)},
        )
    return CleanupResponse(removed=removed)


@app.get("/check", response_model=DuplicateCheckResponse)
def check_duplicate(
    key: str | None = Query(default=None, description="Content key, compared trimmed and lowercased"),
    ledger: PublishLedgerRepository = Depends(get_ledger),
) -> DuplicateCheckResponse:
    record = ledger.find(key)
    return DuplicateCheckResponse(exists=record is not None, record=record)


@app.post("/record", response_model=RecordResponse)
def record_publication(
    payload: RecordRequest,
    ledger: PublishLedgerRepository = Depends(get_ledger),
) -> RecordResponse:
    record = ledger.record(payload.key, title=payload.title, url=payload.url, platform=payload.platform)
    return RecordResponse(success=True, record=record)
