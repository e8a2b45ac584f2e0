from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from referral_intake.clients.blob_storage_client import BlobStorageClient
from referral_intake.models.schemas import StorageKind
from referral_intake.services.content_extractor import build_data_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageOutcome:
    file_path: str
    storage_kind: StorageKind
    warning: Optional[str] = None


class StorageResolver:
    """Decides where the original upload bytes live.

    Remote blob storage when a container is configured, otherwise (or when the
    upload fails) an inline data URL. Never raises for storage problems.
    """

    def __init__(self, blob_client: Optional[BlobStorageClient] = None) -> None:
        self._blob_client = blob_client

    @property
    def remote_enabled(self) -> bool:
        return self._blob_client is not None and self._blob_client.configured

    async def resolve(
        self,
        content: bytes,
        mime_type: str,
        file_name: str,
        data_url: Optional[str] = None,
    ) -> StorageOutcome:
        local_path = data_url or build_data_url(content, mime_type)
        if not self.remote_enabled:
            return StorageOutcome(file_path=local_path, storage_kind=StorageKind.LOCAL)

        assert self._blob_client is not None
        try:
            url = await self._blob_client.upload(content, mime_type, file_name)
        except Exception as exc:
            # Any remote failure falls back to the inline copy.
            logger.warning("Remote storage failed for %s, falling back to inline data URL: %s", file_name, exc)
            return StorageOutcome(
                file_path=local_path,
                storage_kind=StorageKind.LOCAL,
                warning=f"remote storage skipped: {exc}",
            )
        return StorageOutcome(file_path=url, storage_kind=StorageKind.REMOTE)
