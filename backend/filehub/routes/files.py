"""Files API routes."""
import logging
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, UploadFile, File as FastAPIFile
from fastapi.responses import StreamingResponse

from filehub.config import settings
from filehub.deps import get_file_service, get_principal, require_principal
from filehub.schemas.common import DeleteResponse
from filehub.schemas.file import FileListResponse, FileResponse, TagsUpdate
from filehub.services.access import Principal
from filehub.services.file_service import FileService
from filehub.services.ingest import file_extension

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

# Code files previewed as plain text instead of being downloaded or executed
_TEXT_EXTENSIONS = {
    ".py", ".php", ".js", ".ts", ".c", ".cpp", ".h", ".java", ".rb", ".go", ".rs",
    ".sh", ".bat", ".cmd", ".ps1", ".sql", ".xml", ".yaml", ".yml", ".json", ".md",
    ".log", ".ini", ".conf", ".txt", ".m3u",
}
_FORCED_PLAIN_EXTENSIONS = {".py", ".php"}


async def _iter_upload(file: UploadFile, chunk_size: int):
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


def preview_content_type(filename: str, mime_type: str) -> str:
    """Content-Type for inline preview; text-like files get an explicit utf-8 charset."""
    ext = file_extension(filename)
    is_text = (
        ext in _TEXT_EXTENSIONS
        or mime_type.startswith("text/")
        or mime_type in ("application/json", "application/javascript")
    )
    if not is_text:
        return mime_type
    if ext in _FORCED_PLAIN_EXTENSIONS and "html" not in mime_type:
        return "text/plain; charset=utf-8"
    if "charset=" not in mime_type:
        return f"{mime_type}; charset=utf-8"
    return mime_type


def content_disposition(filename: str, inline: bool) -> str:
    disposition = "inline" if inline else "attachment"
    return f"{disposition}; filename*=UTF-8''{quote(filename, safe='')}"


@router.post("/upload", response_model=FileResponse, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    is_public: bool = Query(True),
    principal: Principal = Depends(get_principal),
    service: FileService = Depends(get_file_service),
):
    """Upload a file; its bytes are stored under their content hash."""
    try:
        record = await service.upload(
            principal,
            _iter_upload(file, settings.UPLOAD_CHUNK_SIZE),
            filename=file.filename or "unnamed",
            mime_type=file.content_type,
            is_public=is_public,
        )
    finally:
        await file.close()
    return FileResponse.from_record(record)


@router.get("/list", response_model=FileListResponse)
async def list_files(
    page: int = Query(1),
    limit: int = Query(10, description="Page size, capped at 100"),
    search: str = Query(""),
    tag: str = Query(""),
    principal: Principal = Depends(get_principal),
    service: FileService = Depends(get_file_service),
):
    """List files visible to the caller, newest first."""
    result = await service.list_files(principal, page, limit, search, tag)
    return FileListResponse(
        files=[FileResponse.from_record(r) for r in result.records],
        total=result.total,
        page=result.page,
        limit=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/export")
async def export_files(
    tag: str = Query("", description="Only export files carrying this tag"),
    principal: Principal = Depends(get_principal),
    service: FileService = Depends(get_file_service),
):
    """Download all routed public files as one zip archive."""
    predicate = (lambda r: tag in r.tag_list) if tag else None
    stream = await service.export(principal, predicate)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"filehub-export-{timestamp}.zip"
    return StreamingResponse(
        stream,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/download/{content_id}")
async def download_file(
    content_id: str,
    preview: bool = Query(False),
    principal: Principal = Depends(get_principal),
    service: FileService = Depends(get_file_service),
):
    """Download or preview content by its content id."""
    download = await service.download(principal, content_id, preview=preview)
    record = download.record

    media_type = record.mime_type or "application/octet-stream"
    if preview:
        media_type = preview_content_type(record.filename, media_type)
    return StreamingResponse(
        download.stream,
        media_type=media_type,
        headers={
            "Content-Disposition": content_disposition(record.filename, inline=preview),
            "Content-Length": str(record.size_bytes),
        },
    )


@router.get("/{record_id}", response_model=FileResponse)
async def get_file_metadata(
    record_id: int,
    principal: Principal = Depends(get_principal),
    service: FileService = Depends(get_file_service),
):
    """Get file metadata by record ID."""
    record = await service.get(principal, record_id)
    return FileResponse.from_record(record)


@router.post("/{record_id}/toggle-visibility", response_model=FileResponse)
async def toggle_visibility(
    record_id: int,
    principal: Principal = Depends(require_principal),
    service: FileService = Depends(get_file_service),
):
    """Flip a file between public and private."""
    record = await service.toggle_visibility(principal, record_id)
    return FileResponse.from_record(record)


@router.put("/{record_id}/tags", response_model=FileResponse)
async def update_tags(
    record_id: int,
    body: TagsUpdate,
    principal: Principal = Depends(require_principal),
    service: FileService = Depends(get_file_service),
):
    """Replace a file's tags. Every tag must be in the allowed vocabulary."""
    record = await service.retag(principal, record_id, body.tags)
    return FileResponse.from_record(record)


@router.delete("/{record_id}", response_model=DeleteResponse)
async def delete_file(
    record_id: int,
    principal: Principal = Depends(require_principal),
    service: FileService = Depends(get_file_service),
):
    """Delete a file record. Stored bytes are kept."""
    await service.delete(principal, record_id)
    return DeleteResponse(deleted=True, id=record_id)
