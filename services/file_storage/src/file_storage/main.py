import datetime as dt
import logging
from pathlib import Path
from urllib.parse import quote

from fastapi import FastAPI, UploadFile, File, Form, Header, Query, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import Settings, settings
from .content_store import ContentStore, iter_chunks
from .db import make_engine, make_session_factory, init_db
from .errors import ContentTypeNotAllowed, ErrorKind, IoFailure, StorageError
from .logging_config import setup_logging
from .metadata_store import MetadataStore
from .schemas import FilesPage, FilesQuery, StoredObject
from .service import FileStorageService

logger = logging.getLogger(__name__)

app = FastAPI(title="File Storage Service", version="1.0.0")

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.GONE: 410,
    ErrorKind.UPLOAD_FAILED: 500,
    ErrorKind.STORAGE_INCONSISTENCY: 500,
    ErrorKind.IO_FAILURE: 503,
    ErrorKind.CANCELLATION_FAILURE: 400,
    ErrorKind.CONTENT_TYPE_NOT_ALLOWED: 415,
}


def build_service(cfg: Settings) -> FileStorageService:
    engine = make_engine(cfg.db_url)
    init_db(engine)
    return FileStorageService(
        ContentStore(cfg.storage_config()),
        MetadataStore(make_session_factory(engine)),
    )


def get_service(request: Request) -> FileStorageService:
    return request.app.state.service


def get_allowed_content_types() -> list[str]:
    return settings.allowed_content_types


@app.on_event("startup")
def _startup():
    setup_logging(settings.log_level)
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    app.state.service = build_service(settings)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    if exc.is_operational:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind.value, exc)
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(exc.kind, 500),
        content={"error": exc.kind.value, "detail": str(exc)},
    )


@app.get("/health")
def health(service: FileStorageService = Depends(get_service)):
    try:
        service.content_store.probe()
    except IoFailure as e:
        logger.error("Health check failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "detail": str(e)})
    return {"status": "ok"}


@app.post("/files", response_model=StoredObject)
async def upload_file(
    file: UploadFile = File(...),
    tags: list[str] | None = Form(None),
    user_id: str = Header("anonymous", alias="X-User-Id"),
    allowed_content_types: list[str] = Depends(get_allowed_content_types),
    service: FileStorageService = Depends(get_service),
):
    content_type = file.content_type or "application/octet-stream"
    logger.info("Upload request received. name=%s content_type=%s user=%s", file.filename, content_type, user_id)

    if allowed_content_types and content_type not in allowed_content_types:
        logger.warning("Upload rejected, content type %s not allowed. user=%s", content_type, user_id)
        raise ContentTypeNotAllowed(content_type)

    try:
        return await service.upload(file, file.filename or "uploaded.bin", content_type, tags, user_id)
    finally:
        await file.close()


@app.get("/files", response_model=FilesPage)
def list_files(
    name: str | None = None,
    tag: str | None = None,
    content_type: str | None = None,
    date_from: dt.datetime | None = None,
    date_to: dt.datetime | None = None,
    page_number: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    service: FileStorageService = Depends(get_service),
):
    query = FilesQuery(
        name=name,
        tag=tag,
        content_type=content_type,
        date_from=date_from,
        date_to=date_to,
        page_number=page_number,
        page_size=page_size,
    )
    return service.list_files(query)


def _content_disposition(kind: str, filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"{kind}; filename*=utf-8''{quoted}"
    return f'{kind}; filename="{filename}"'


def _stream_file(service: FileStorageService, file_id: str, disposition: str) -> StreamingResponse:
    f = service.download(file_id)
    logger.info("Streaming file id=%s content_type=%s disposition=%s", file_id, f.content_type, disposition)
    return StreamingResponse(
        iter_chunks(f.stream, service.content_store.config.chunk_size),
        media_type=f.content_type,
        headers={
            "Content-Disposition": _content_disposition(disposition, f.file_name),
            "Content-Length": str(f.size_bytes),
            "X-Checksum-Sha256": f.checksum,
        },
    )


@app.get("/files/{file_id}/download")
def download(file_id: str, service: FileStorageService = Depends(get_service)):
    return _stream_file(service, file_id, "attachment")


@app.get("/files/{file_id}/preview")
def preview(file_id: str, service: FileStorageService = Depends(get_service)):
    return _stream_file(service, file_id, "inline")


@app.delete("/files/{file_id}")
def soft_delete(file_id: str, service: FileStorageService = Depends(get_service)):
    service.soft_delete(file_id)
    return True


@app.delete("/files/{file_id}/hard")
def hard_delete(file_id: str, service: FileStorageService = Depends(get_service)):
    service.hard_delete(file_id)
    return True


def run():
    import uvicorn

    uvicorn.run("file_storage.main:app", host="0.0.0.0", port=settings.port)
