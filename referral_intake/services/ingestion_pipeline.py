from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from referral_intake.core.config import settings
from referral_intake.core.errors import DuplicateRecordError, IngestionError, UnsupportedFormatError
from referral_intake.models.schemas import (
    UNKNOWN,
    ExtractionResult,
    IngestionStage,
    ReferralRecord,
    ReferralStatus,
)
from referral_intake.services import content_extractor, format_classifier
from referral_intake.services.extraction_client import ExtractionClient
from referral_intake.services.record_store import RecordStore
from referral_intake.services.status_resolver import resolve_status
from referral_intake.services.storage_resolver import StorageOutcome, StorageResolver

logger = logging.getLogger(__name__)


def generate_referral_id() -> str:
    # Millisecond clock keeps ids roughly time-ordered; the suffix separates same-ms uploads.
    return f"REF-{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


def _or_unknown(value: Optional[str]) -> str:
    text = (value or "").strip()
    return text or UNKNOWN


def assemble_record(
    result: ExtractionResult,
    storage: StorageOutcome,
    mime_type: str,
    status: ReferralStatus,
    record_id: str,
) -> ReferralRecord:
    """Apply persistence defaults to what the extraction service returned."""
    return ReferralRecord(
        id=record_id,
        patient_name=_or_unknown(result.patient_name),
        referred_by=_or_unknown(result.referred_by),
        referred_to=_or_unknown(result.referred_to),
        diagnosis=_or_unknown(result.diagnosis),
        dob=result.dob,
        referral_date=result.referral_date,
        notes=result.summary,
        file_path=storage.file_path,
        mime_type=mime_type,
        status=status,
        storage_kind=storage.storage_kind,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


class IngestionPipeline:
    def __init__(
        self,
        extraction: ExtractionClient,
        storage: StorageResolver,
        records: RecordStore,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._extraction = extraction
        self._storage = storage
        self._records = records
        self._id_factory = id_factory or generate_referral_id
        self._id_attempts = settings.id_generation_attempts

    async def ingest(self, file) -> Dict:
        file_name = getattr(file, "filename", None) or "upload"
        content_type = getattr(file, "content_type", None) or ""
        stages: List[IngestionStage] = []

        def enter(stage: IngestionStage) -> None:
            stages.append(stage)
            logger.debug("ingest %s: %s", file_name, stage.value)

        try:
            enter(IngestionStage.VALIDATING)
            category, mime_type = format_classifier.classify(content_type, file_name)
            content = await file.read()
            if not content:
                raise UnsupportedFormatError("The uploaded file is empty.")

            enter(IngestionStage.CONVERTING)
            converted = await asyncio.to_thread(content_extractor.convert, content, category, mime_type)

            enter(IngestionStage.STORING)
            storage_task = asyncio.create_task(
                self._storage.resolve(content, mime_type, file_name, data_url=converted.data_url)
            )
            enter(IngestionStage.EXTRACTING)
            try:
                result = await self._extraction.extract(binary=converted.binary, text=converted.text)
            except BaseException:
                storage_task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await storage_task
                raise
            storage = await storage_task

            enter(IngestionStage.ASSEMBLING)
            status = resolve_status(result.is_referral)
            record = assemble_record(result, storage, mime_type, status, record_id=self._id_factory())
            record = await self._persist(record)
            enter(IngestionStage.PERSISTED)
        except IngestionError as exc:
            stages.append(IngestionStage.ABORTED)
            logger.warning(
                "Ingestion of %s aborted after %s: %s",
                file_name,
                stages[-2].value if len(stages) > 1 else "start",
                exc,
            )
            raise

        logger.info(
            "Processed %s (%s) into %s using %s storage. Status: %s",
            file_name,
            category.value,
            record.id,
            storage.storage_kind.value,
            record.status.value,
        )
        return {
            "record": record.model_dump(mode="json"),
            "storage_kind": storage.storage_kind.value,
            "stages": [stage.value for stage in stages],
            "warning": storage.warning,
        }

    async def _persist(self, record: ReferralRecord) -> ReferralRecord:
        candidate = record
        for attempt in range(1, self._id_attempts + 1):
            try:
                await asyncio.to_thread(self._records.create, candidate)
                return candidate
            except DuplicateRecordError:
                logger.warning("Referral id %s collided (attempt %d), regenerating", candidate.id, attempt)
                candidate = candidate.model_copy(update={"id": self._id_factory()})
        raise DuplicateRecordError(
            f"Could not allocate a unique referral id after {self._id_attempts} attempts."
        )
