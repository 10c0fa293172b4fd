import os
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from socialchat.core.config import Settings
from socialchat.core.errors import ValidationError
from socialchat.core.logger import get_logger


logger = get_logger(__name__)


def kind_for(content_type: Optional[str]) -> str:
    """Message kind for an upload's content type."""
    content_type = content_type or ""
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith("video/"):
        return "video"
    raise ValidationError("Invalid file type. Only images and videos are allowed.")


class LocalBlobStore:
    """Media files on local disk, served back under MEDIA_BASE_URL."""

    def __init__(self, settings: Settings) -> None:
        self.root = Path(settings.UPLOAD_DIR)
        self.base_url = settings.MEDIA_BASE_URL.rstrip("/")
        self.max_bytes = settings.MAX_UPLOAD_BYTES

    async def store(self, upload: UploadFile) -> str:
        kind_for(upload.content_type)
        data = await upload.read(self.max_bytes + 1)
        if len(data) > self.max_bytes:
            raise ValidationError("File is too large")
        if not data:
            raise ValidationError("Uploaded file is empty")
        ext = os.path.splitext(upload.filename or "")[1].lower()
        ref = f"{uuid.uuid4().hex}{ext}"
        await run_in_threadpool(self._write, ref, data)
        logger.info(f"Stored media {ref} ({len(data)} bytes)")
        return ref

    def url_for(self, ref: str) -> str:
        return f"{self.base_url}/{ref}"

    async def delete(self, ref: str) -> None:
        await run_in_threadpool(self._unlink, ref)

    def _path(self, ref: str) -> Path:
        # refs are generated names; anything with a path component is foreign
        if not ref or Path(ref).name != ref:
            raise ValidationError("Invalid media reference")
        return self.root / ref

    def _write(self, ref: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._path(ref).write_bytes(data)

    def _unlink(self, ref: str) -> None:
        self._path(ref).unlink(missing_ok=True)
