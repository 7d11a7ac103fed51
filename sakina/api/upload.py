import logging
from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sakina.config import settings
from sakina.models.user import User
from sakina.services.storage_service import StorageService
from sakina.utils.dependencies import require_capability, Capability
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/upload", tags=["Upload"])
logger = logging.getLogger(__name__)


@router.post("/image", status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    folder: str = Query("images", pattern="^[a-z0-9_-]+$"),
    admin: User = Depends(require_capability(Capability.UPLOAD_FILES)),
):
    """Upload a cover or category image (jpg, png, webp)"""
    result = await StorageService.save_upload(file, kind="image", folder=folder)
    logger.info(f"🖼️ Image uploaded by admin {admin.id}: {result['key']}")
    return success_response(result, "Image uploaded", status.HTTP_201_CREATED)


@router.post("/audio", status_code=status.HTTP_201_CREATED)
async def upload_audio(
    file: UploadFile = File(...),
    admin: User = Depends(require_capability(Capability.UPLOAD_FILES)),
):
    """Upload a track's audio; store the returned key on the track as audio_key"""
    result = await StorageService.save_upload(file, kind="audio")
    logger.info(f"🎧 Audio uploaded by admin {admin.id}: {result['key']}")
    return success_response(result, "Audio uploaded", status.HTTP_201_CREATED)


@router.delete("")
async def delete_file(
    key: str = Query(..., min_length=1),
    admin: User = Depends(require_capability(Capability.UPLOAD_FILES)),
):
    deleted = StorageService.delete(key)
    return success_response({"deleted": deleted}, "File deleted" if deleted else "File not found")
