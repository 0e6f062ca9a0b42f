from datetime import datetime, timezone
from typing import List, Optional, Union
from urllib.parse import quote

from fastapi import APIRouter, File, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from starlette.datastructures import UploadFile as StarletteUploadFile

from app.exceptions import MissingFileError
from app.models.file_record import FileRecord
from logger_config import setup_logger

logger = setup_logger()

router = APIRouter(prefix="/storage", tags=["storage"])

NOT_FOUND_RESPONSE = {404: {"description": "File not found"}}


def get_storage_manager(request: Request):
    return request.app.state.storage_manager


def content_disposition(filename: str) -> str:
    """Build an ``inline`` Content-Disposition header for ``filename``.

    Header values must be latin-1, so names outside ASCII get an ASCII
    fallback plus an RFC 5987 ``filename*`` parameter.
    """
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    try:
        escaped.encode("ascii")
        return f'inline; filename="{escaped}"'
    except UnicodeEncodeError:
        fallback = escaped.encode("ascii", "replace").decode("ascii")
        return f'inline; filename="{fallback}"; filename*=UTF-8\'\'{quote(filename)}'


@router.post(
    "/upload",
    status_code=status.HTTP_201_CREATED,
    response_model=FileRecord,
    response_model_by_alias=True,
    summary="Upload a file",
    responses={400: {"description": "Bad request"}},
)
async def upload_file(request: Request, file: Union[UploadFile, str, None] = File(None)):
    storage_manager = get_storage_manager(request)

    # A plain form field named "file" carries no upload
    if not isinstance(file, StarletteUploadFile):
        raise MissingFileError()

    logger.info(f"Receiving upload request for file: {file.filename}")

    # Get content length from the spooled file
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    logger.debug(f"Content-Length: {size} bytes")

    return await storage_manager.upload(file.filename, file.content_type, size, file)


@router.get(
    "/files/{file_id}",
    summary="Download a file",
    response_class=StreamingResponse,
    responses=NOT_FOUND_RESPONSE,
)
async def get_file(file_id: str, request: Request):
    storage_manager = get_storage_manager(request)
    logger.info(f"Receiving download request for file_id: {file_id}")

    record, content = await storage_manager.fetch(file_id)

    return StreamingResponse(
        content,
        headers={
            "Content-Type": record.mime_type,
            "Content-Length": str(record.size),
            "Content-Disposition": content_disposition(record.original_name),
        },
    )


@router.get(
    "/files/{file_id}/info",
    response_model=FileRecord,
    response_model_by_alias=True,
    summary="Get file metadata",
    responses=NOT_FOUND_RESPONSE,
)
async def get_file_info(file_id: str, request: Request):
    storage_manager = get_storage_manager(request)
    logger.info(f"Receiving info request for file_id: {file_id}")
    return await storage_manager.info(file_id)


@router.delete("/files/{file_id}", summary="Delete a file", responses=NOT_FOUND_RESPONSE)
async def delete_file(file_id: str, request: Request):
    storage_manager = get_storage_manager(request)
    logger.info(f"Receiving delete request for file_id: {file_id}")

    await storage_manager.delete(file_id)
    return {"message": "File deleted successfully"}


@router.get(
    "/files",
    response_model=List[FileRecord],
    response_model_by_alias=True,
    summary="List files",
)
async def list_files(request: Request, limit: Optional[int] = None, offset: Optional[int] = None):
    storage_manager = get_storage_manager(request)
    limit = 100 if limit is None else limit
    offset = 0 if offset is None else offset
    logger.info(f"Receiving list request (limit={limit}, offset={offset})")
    return await storage_manager.list(offset=offset, limit=limit)


@router.get("/health", summary="Health check endpoint")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
