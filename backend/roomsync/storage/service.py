"""Blob storage for file messages.

Files are stored in: {upload_dir}/{bucket}/{room_id}/{epoch_ms}-{random}.{ext}
and served back under ``{base_url}/{bucket}/...``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from ..errors import UploadError

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Abstract object storage used by file messages."""

    @abstractmethod
    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Store ``content`` at ``path`` and return its public URL.

        Raises:
            UploadError: If the upload is rejected or fails.
        """


class LocalBlobStorage(BlobStorage):
    """BlobStorage writing to a local directory."""

    def __init__(self, upload_dir: str = "uploads", base_url: str = "/storage", bucket: str = "chat-files"):
        self.upload_dir = Path(upload_dir)
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket

    def _target(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise UploadError(f"Invalid upload path: {path}", status_code=400)
        return self.upload_dir / self.bucket / Path(*relative.parts)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{self.bucket}/{path}"

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        target = self._target(path)
        if target.exists():
            raise UploadError(f"Object already exists: {path}", status_code=409)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise UploadError(f"Failed to store {path}: {e}") from e

        logger.info(f"Saved file: {target} ({len(content)} bytes, {content_type})")
        return self.public_url(path)
