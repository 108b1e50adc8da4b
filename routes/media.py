"""
Media Router
Serves stored videos to holders of a valid signed URL
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse

from backends.object_storage import LocalObjectStorage, StorageError, get_object_storage
from utils.error_handling import ForbiddenError, NotFoundError
from utils.structured_logging import log_security_event

router = APIRouter()


@router.get("/{bucket}/{path:path}")
def get_media_object(
    bucket: str,
    path: str,
    token: str = Query(..., min_length=1),
    storage: LocalObjectStorage = Depends(get_object_storage),
):
    if not storage.verify_signed_access(bucket, path, token):
        log_security_event(
            "media_token_rejected", f"Invalid or expired media URL for {bucket}/{path}", severity="low"
        )
        raise ForbiddenError("This video link is invalid or has expired", title="Video unavailable")

    try:
        target = storage.open(path)
    except StorageError as e:
        raise NotFoundError(e.message, title="Video unavailable") from e

    return FileResponse(target, filename=target.name)
