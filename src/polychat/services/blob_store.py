"""Blob storage for image attachments backed by Google Cloud Storage."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol
from urllib.parse import parse_qs, unquote, urlsplit
from uuid import uuid4

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage
from google.oauth2 import service_account

from ..config import Settings

logger = logging.getLogger(__name__)

_GCS_HOST = "storage.googleapis.com"
# Signed URLs this close to expiry are re-signed.
_REFRESH_MARGIN = timedelta(minutes=10)


class BlobStoreError(RuntimeError):
    """The blob store could not accept an upload."""


class BlobStore(Protocol):
    def is_available(self) -> bool:
        ...

    async def upload(self, data: bytes, content_type: str) -> str:
        """Store ``data`` and return a URL providers can fetch directly."""
        ...

    async def refresh_url(self, url: str) -> str:
        """Return a fetchable version of a URL handed out by ``upload``."""
        ...


def make_blob_name(content_type: str, *, prefix: str = "chat_images") -> str:
    """Return a unique, date-partitioned object name for an upload."""

    extension = mimetypes.guess_extension(content_type or "") or ".bin"
    if extension == ".jpe":
        extension = ".jpg"
    day = datetime.now(timezone.utc).strftime("%Y/%m/%d")
    return f"{prefix}/{day}/{uuid4().hex}{extension}"


def _load_credentials(credentials_path: Path | None) -> service_account.Credentials | None:
    if credentials_path is None:
        return None
    try:
        resolved_path = Path(credentials_path).expanduser().resolve()
        if not resolved_path.exists():
            return None
        return service_account.Credentials.from_service_account_file(str(resolved_path))
    except (FileNotFoundError, OSError, ValueError) as exc:
        logger.debug(
            "Could not load GCS credentials from %s: %s", credentials_path, exc
        )
        return None


class GCSBlobStore:
    """Upload bytes to a bucket and hand back a URL providers can fetch.

    With ``public_urls`` the bucket is expected to allow public reads and
    the permanent object URL is returned. Otherwise a v4 signed GET URL is
    returned, and :meth:`refresh_url` re-signs it once it has expired.
    """

    def __init__(
        self,
        *,
        bucket_name: str,
        credentials_path: Path | None,
        project_id: str | None = None,
        url_ttl: timedelta = timedelta(days=7),
        public_urls: bool = True,
    ) -> None:
        self._bucket_name = bucket_name
        self._credentials_path = credentials_path
        self._project_id = project_id
        self._url_ttl = url_ttl
        self._public_urls = public_urls
        self._credentials: service_account.Credentials | None = None
        self._credentials_checked = False
        self._bucket: storage.Bucket | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GCSBlobStore":
        return cls(
            bucket_name=settings.gcs_bucket_name,
            credentials_path=settings.google_application_credentials,
            project_id=settings.gcp_project_id,
            url_ttl=settings.attachment_url_ttl,
            public_urls=settings.gcs_public_urls,
        )

    def _get_credentials(self) -> service_account.Credentials | None:
        if not self._credentials_checked:
            self._credentials = _load_credentials(self._credentials_path)
            self._credentials_checked = True
        return self._credentials

    def is_available(self) -> bool:
        """Check if GCS credentials are available without raising errors."""

        return self._get_credentials() is not None

    def _get_bucket(self) -> storage.Bucket:
        if self._bucket is None:
            credentials = self._get_credentials()
            if credentials is None:
                raise RuntimeError(
                    "GCS credentials not found. Please configure "
                    "GOOGLE_APPLICATION_CREDENTIALS with a valid service account JSON file."
                )
            client = storage.Client(
                project=self._project_id or credentials.project_id,
                credentials=credentials,
            )
            self._bucket = client.bucket(self._bucket_name)
        return self._bucket

    def _sign(self, blob: storage.Blob) -> str:
        return blob.generate_signed_url(
            version="v4",
            expiration=self._url_ttl,
            method="GET",
        )

    def _upload_sync(self, blob_name: str, data: bytes, content_type: str) -> str:
        blob = self._get_bucket().blob(blob_name)
        # Atomic create: never overwrite an existing object
        blob.upload_from_string(
            data,
            content_type=content_type,
            if_generation_match=0,
        )
        if self._public_urls:
            return blob.public_url
        return self._sign(blob)

    async def upload(self, data: bytes, content_type: str) -> str:
        blob_name = make_blob_name(content_type)
        try:
            url = await asyncio.to_thread(
                self._upload_sync, blob_name, data, content_type
            )
        except (GoogleAPIError, RuntimeError, ValueError) as exc:
            raise BlobStoreError(f"Upload to gs://{self._bucket_name} failed: {exc}") from exc
        logger.info(
            "Uploaded %s (%s, %d bytes) to gs://%s",
            blob_name,
            content_type,
            len(data),
            self._bucket_name,
        )
        return url

    def _blob_name_from_url(self, url: str) -> str | None:
        parts = urlsplit(url)
        if parts.netloc != _GCS_HOST:
            return None
        bucket, _, blob_name = parts.path.lstrip("/").partition("/")
        if bucket != self._bucket_name or not blob_name:
            return None
        return unquote(blob_name)

    async def refresh_url(self, url: str) -> str:
        """Return ``url``, re-signed when it is one of ours and has expired.

        Never raises; when signing fails the stale URL is returned.
        """

        if self._public_urls:
            return url
        expires_at = signed_url_expiry(url)
        if expires_at is None:
            return url
        if expires_at - datetime.now(timezone.utc) > _REFRESH_MARGIN:
            return url
        blob_name = self._blob_name_from_url(url)
        if blob_name is None:
            return url
        try:
            refreshed = await asyncio.to_thread(
                lambda: self._sign(self._get_bucket().blob(blob_name))
            )
        except (GoogleAPIError, RuntimeError, ValueError) as exc:
            logger.warning("Could not re-sign %s: %s", blob_name, exc)
            return url
        logger.debug("Re-signed expired attachment URL for %s", blob_name)
        return refreshed


def signed_url_expiry(url: str) -> datetime | None:
    """Return when a v4 signed URL expires, or ``None`` if it is not signed."""

    query = parse_qs(urlsplit(url).query)
    signed_at = query.get("X-Goog-Date")
    lifetime = query.get("X-Goog-Expires")
    if not signed_at or not lifetime:
        return None
    try:
        start = datetime.strptime(signed_at[0], "%Y%m%dT%H%M%SZ").replace(
            tzinfo=timezone.utc
        )
        return start + timedelta(seconds=int(lifetime[0]))
    except ValueError:
        return None


__all__ = [
    "BlobStore",
    "BlobStoreError",
    "GCSBlobStore",
    "make_blob_name",
    "signed_url_expiry",
]
