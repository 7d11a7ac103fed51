import os
import uuid
import aiofiles
import logging
from pathlib import Path
from typing import Optional, Dict, List
from fastapi import UploadFile
from sakina.config import settings
from sakina.exceptions import ValidationError, NotFoundError

logger = logging.getLogger(__name__)


class StorageBackend:
    """
    Object storage interface. Keys are relative paths such as
    ``audio/1f0c...e2.mp3``; the backend decides how they map to bytes and URLs.
    """

    async def save(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    async def read(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def url(self, key: str, expires: Optional[int] = None) -> str:
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Files under UPLOAD_DIR, served by the /uploads static mount"""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.base_url = (base_url or settings.BACKEND_URL).rstrip('/')

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValidationError("Invalid file key")
        return path

    async def save(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, 'wb') as out_file:
            await out_file.write(data)
        logger.info(f"✅ File saved locally: {path} ({len(data)} bytes)")
        return key

    async def read(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise NotFoundError("File not found")
        async with aiofiles.open(path, 'rb') as in_file:
            return await in_file.read()

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"🗑️ Deleted local file: {path}")
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def url(self, key: str, expires: Optional[int] = None) -> str:
        return f"{self.base_url}/uploads/{key.lstrip('/')}"


_storage: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """Backend selected once from settings.STORAGE_BACKEND"""
    global _storage
    if _storage is None:
        if settings.use_s3:
            from sakina.services.s3_service import S3Storage
            _storage = S3Storage()
        else:
            _storage = LocalStorage()
            logger.info(f"ℹ️ Using local storage at {_storage.root}")
    return _storage


def set_storage(storage: Optional[StorageBackend]):
    global _storage
    _storage = storage


class StorageService:
    """Upload validation and key generation on top of the configured backend"""

    ALLOWED_IMAGE_TYPES: Dict[str, List[str]] = {
        '.jpg': ['image/jpeg'],
        '.jpeg': ['image/jpeg'],
        '.png': ['image/png'],
        '.webp': ['image/webp'],
    }

    ALLOWED_AUDIO_TYPES: Dict[str, List[str]] = {
        '.mp3': ['audio/mpeg', 'audio/mp3'],
        '.m4a': ['audio/mp4', 'audio/x-m4a', 'audio/m4a'],
        '.wav': ['audio/wav', 'audio/x-wav', 'audio/wave'],
        '.ogg': ['audio/ogg'],
        '.aac': ['audio/aac', 'audio/x-aac'],
    }

    @staticmethod
    def generate_key(folder: str, filename: str) -> str:
        file_extension = os.path.splitext(filename or "")[1].lower()
        return f"{folder.strip('/')}/{uuid.uuid4()}{file_extension}"

    @staticmethod
    def validate_file(
        filename: str,
        content_type: Optional[str],
        size: int,
        allowed: Dict[str, List[str]],
        max_size: int,
    ):
        file_extension = os.path.splitext(filename or "")[1].lower()

        if file_extension not in allowed:
            logger.warning(f"Invalid file type attempted: {file_extension}")
            raise ValidationError(f"Invalid file type. Allowed types: {', '.join(allowed.keys())}")

        if content_type and content_type not in allowed[file_extension]:
            logger.warning(f"MIME type mismatch: {content_type} for {file_extension}")
            raise ValidationError("File type does not match file extension")

        if size == 0:
            raise ValidationError("File is empty")

        if size > max_size:
            max_size_mb = max_size / 1024 / 1024
            logger.warning(f"File too large: {size} bytes (max: {max_size})")
            raise ValidationError(f"File too large. Maximum size: {max_size_mb:.1f}MB")

    @staticmethod
    async def save_upload(file: UploadFile, kind: str = "image", folder: Optional[str] = None) -> dict:
        """Validate and store an uploaded image or audio file. Returns key and URL."""
        if kind == "audio":
            allowed, max_size, default_folder = (
                StorageService.ALLOWED_AUDIO_TYPES, settings.MAX_AUDIO_FILE_SIZE, "audio"
            )
        else:
            allowed, max_size, default_folder = (
                StorageService.ALLOWED_IMAGE_TYPES, settings.MAX_FILE_SIZE, "images"
            )

        content = await file.read()
        StorageService.validate_file(file.filename, file.content_type, len(content), allowed, max_size)

        storage = get_storage()
        key = StorageService.generate_key(folder or default_folder, file.filename)
        await storage.save(key, content, file.content_type)

        return {
            "key": key,
            "url": storage.url(key),
            "size": len(content),
            "content_type": file.content_type,
        }

    @staticmethod
    def delete(key: str) -> bool:
        if not key:
            raise ValidationError("File key is required")
        return get_storage().delete(key)

    @staticmethod
    def signed_url(key: Optional[str], expires: Optional[int] = None) -> Optional[str]:
        if not key:
            return None
        if key.startswith("http"):
            return key
        return get_storage().url(key, expires)
