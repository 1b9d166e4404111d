"""
Temp File Endpoint

Serves generated files from the storage temp directory.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse
import structlog

from nutritionist.config import Settings, get_settings
from nutritionist.storage import PathOutsideStorage, content_type_for, resolve_temp_path

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/temp/{file_path:path}")
async def serve_temp_file(
    file_path: str,
    settings: Settings = Depends(get_settings),
) -> FileResponse:
    try:
        path = resolve_temp_path(settings.storage.temp_dir, file_path)
    except PathOutsideStorage:
        logger.warning("Temp file access denied", path=file_path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return FileResponse(
        path,
        media_type=content_type_for(path),
        headers={
            "Content-Disposition": f'inline; filename="{path.name}"',
            "Cache-Control": "public, max-age=3600",
        },
    )
