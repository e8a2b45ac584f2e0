from __future__ import annotations
from referral_intake.clients.blob_storage_client import BlobStorageClient
from referral_intake.services.extraction_client import ExtractionClient
from referral_intake.services.ingestion_pipeline import IngestionPipeline
from referral_intake.services.llm_gateway import LLMGateway
from referral_intake.services.record_store import JsonRecordStore
from referral_intake.services.review_service import ReviewService
from referral_intake.services.storage_resolver import StorageResolver


class Container:
    def __init__(self) -> None:
        self.records = JsonRecordStore()
        self.records.initialize()
        self.llm_gateway = LLMGateway()
        self.blob_storage = BlobStorageClient()
        self.extraction = ExtractionClient(self.llm_gateway)
        self.storage = StorageResolver(self.blob_storage)
        self.pipeline = IngestionPipeline(
            extraction=self.extraction,
            storage=self.storage,
            records=self.records,
        )
        self.review = ReviewService(self.records)

    async def close(self) -> None:
        await self.llm_gateway.close()
        await self.blob_storage.close()
