from __future__ import annotations

import logging
import re
import time
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from referral_intake.core.config import settings
from referral_intake.core.errors import StorageUploadError

logger = logging.getLogger(__name__)

_BLOB_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")
_AZURE_API_VERSION = "2023-11-03"


def sanitize_blob_file_name(file_name: str) -> str:
    return _BLOB_NAME_UNSAFE.sub("_", file_name or "") or "upload"


def build_blob_name(file_name: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{stamp}-{sanitize_blob_file_name(file_name)}"


class BlobStorageClient:
    """Uploads block blobs into one container through a container SAS URL."""

    def __init__(
        self,
        container_sas_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        raw_url = container_sas_url if container_sas_url is not None else settings.azure_storage_sas_url
        self._container_sas_url = (raw_url or "").strip()
        self._timeout = settings.storage_timeout_sec
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self._container_sas_url)

    async def close(self) -> None:
        await self._client.aclose()

    def blob_urls(self, blob_name: str) -> tuple[str, str]:
        """Return (write URL with SAS query, public URL without it)."""
        parts = urlsplit(self._container_sas_url)
        path = f"{parts.path.rstrip('/')}/{quote(blob_name)}"
        write_url = urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))
        public_url = urlunsplit((parts.scheme, parts.netloc, path, "", ""))
        return write_url, public_url

    async def upload(self, content: bytes, content_type: str, file_name: str) -> str:
        if not self.configured:
            raise StorageUploadError("remote storage is not configured")

        blob_name = build_blob_name(file_name)
        write_url, public_url = self.blob_urls(blob_name)
        headers = {
            "x-ms-blob-type": "BlockBlob",
            "x-ms-version": _AZURE_API_VERSION,
            "x-ms-blob-content-type": content_type or "application/octet-stream",
            "Content-Type": content_type or "application/octet-stream",
        }
        try:
            r = await self._client.put(write_url, content=content, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise StorageUploadError(f"blob upload failed: {exc.__class__.__name__}: {exc}") from exc

        if r.status_code >= 400:
            body = (r.text or "").strip().replace("\n", " ")
            raise StorageUploadError(f"blob upload rejected with status {r.status_code}: {body[:220]}")

        logger.info("Uploaded blob %s (%d bytes)", blob_name, len(content))
        return public_url
