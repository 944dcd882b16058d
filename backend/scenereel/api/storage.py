from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from scenereel.api.deps import StorageDep

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".json": "application/json",
}


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str, storage: StorageDep):
    """Serve render artifacts from local storage."""
    try:
        file_path = storage.get_file_path(storage_key)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid storage key",
        )

    if not file_path.exists():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    return FileResponse(
        path=str(file_path),
        media_type=MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream"),
        filename=file_path.name,
    )
