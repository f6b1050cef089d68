"""Image attachment validation and upload."""

from __future__ import annotations

import logging

from fastapi import UploadFile

from ..schemas.chat import Attachment
from .blob_store import BlobStore

logger = logging.getLogger(__name__)

_IMAGE_PREFIX = "image/"


class AttachmentError(RuntimeError):
    """Base error raised for attachment failures."""


class UnsupportedAttachmentType(AttachmentError):
    """Raised when a non-image file is uploaded."""


class AttachmentTooLarge(AttachmentError):
    """Raised when an uploaded file exceeds the configured limit."""


class AttachmentService:
    """Validate image uploads and store them in the blob store."""

    def __init__(self, blob_store: BlobStore, *, max_size_bytes: int) -> None:
        self._blob_store = blob_store
        self._max_size_bytes = max_size_bytes

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def is_available(self) -> bool:
        return self._blob_store.is_available()

    async def save_upload(self, upload: UploadFile) -> Attachment:
        """Validate an uploaded file and return a reference to the stored copy."""

        mime_type = (upload.content_type or "application/octet-stream").lower()
        self._check_type(mime_type)
        data = await self._read_upload(upload)
        return await self.save_bytes(data, mime_type)

    async def save_bytes(self, data: bytes, mime_type: str) -> Attachment:
        mime_type = (mime_type or "").lower()
        self._check_type(mime_type)
        if not data:
            raise AttachmentError("Uploaded file was empty")
        if len(data) > self._max_size_bytes:
            raise AttachmentTooLarge(
                f"Attachment exceeded {self._max_size_bytes} bytes limit"
            )
        url = await self._blob_store.upload(data, mime_type)
        return Attachment(url=url)

    @staticmethod
    def _check_type(mime_type: str) -> None:
        if not mime_type.startswith(_IMAGE_PREFIX):
            raise UnsupportedAttachmentType(mime_type or "unknown")

    async def _read_upload(self, upload: UploadFile) -> bytes:
        chunk_size = 1024 * 1024  # 1 MiB
        size = 0
        chunks: list[bytes] = []
        try:
            while True:
                chunk = await upload.read(chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > self._max_size_bytes:
                    raise AttachmentTooLarge(
                        f"Attachment exceeded {self._max_size_bytes} bytes limit"
                    )
                chunks.append(chunk)
        finally:
            await upload.close()
        return b"".join(chunks)


__all__ = [
    "AttachmentError",
    "AttachmentService",
    "AttachmentTooLarge",
    "UnsupportedAttachmentType",
]
