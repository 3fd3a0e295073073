import logging
import os
import uuid
from typing import Optional, Sequence

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from app.core.config import settings
from app.exceptions import ValidationError

logger = logging.getLogger(__name__)

IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
PROOF_TYPES = IMAGE_TYPES + ("application/pdf",)

CHUNK_SIZE = 64 * 1024
PUBLIC_PREFIX = "/uploads/"


class FileStorageService:
    """Stores uploaded files on local disk under UPLOAD_PATH"""

    def __init__(self, base_path: Optional[str] = None, max_size: Optional[int] = None):
        self.base_path = base_path or settings.UPLOAD_PATH
        self.max_size = max_size or settings.MAX_FILE_SIZE

    async def save(self, upload: UploadFile, kind: str, allowed_types: Sequence[str] = PROOF_TYPES) -> str:
        """
        Save an upload and return its public path (/uploads/<kind>/<name>).

        Raises:
            ValidationError: when the file is missing, of a wrong type or too large
        """
        if upload is None or not upload.filename:
            raise ValidationError("File is required")
        if upload.content_type not in allowed_types:
            raise ValidationError(f"Unsupported file type: {upload.content_type}")

        content = bytearray()
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            content.extend(chunk)
            if len(content) > self.max_size:
                raise ValidationError(f"File too large. Maximum size is {self.max_size // (1024 * 1024)}MB")

        extension = os.path.splitext(upload.filename)[1].lower()
        filename = f"{kind}-{uuid.uuid4().hex}{extension}"
        directory = os.path.join(self.base_path, kind)
        await aiofiles.os.makedirs(directory, exist_ok=True)
        async with aiofiles.open(os.path.join(directory, filename), "wb") as f:
            await f.write(bytes(content))

        logger.info("Stored %s upload %s (%d bytes)", kind, filename, len(content))
        return f"{PUBLIC_PREFIX}{kind}/{filename}"

    async def delete(self, public_path: Optional[str]) -> bool:
        """Remove a file previously returned by save(); unknown paths are ignored"""
        if not public_path or not public_path.startswith(PUBLIC_PREFIX):
            return False
        kind, _, filename = public_path[len(PUBLIC_PREFIX):].partition("/")
        if not kind or not filename or "/" in filename or kind.startswith(".") or filename.startswith("."):
            return False
        try:
            await aiofiles.os.remove(os.path.join(self.base_path, kind, filename))
        except FileNotFoundError:
            return False
        logger.info("Removed %s upload %s", kind, filename)
        return True


file_storage_service = FileStorageService()
