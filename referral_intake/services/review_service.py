from __future__ import annotations

import logging
from typing import Dict, Optional

from referral_intake.core.errors import (
    InvalidStatusTransitionError,
    RecordNotFoundError,
    ReviewValidationError,
)
from referral_intake.models.schemas import ReferralRecord, ReferralStatus
from referral_intake.services.record_store import RecordStore

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {"patient_name", "referred_by", "referred_to", "diagnosis", "dob", "referral_date", "notes"}
)

_ALLOWED_TRANSITIONS = {
    ReferralStatus.PENDING: {ReferralStatus.ACCEPTED, ReferralStatus.REJECTED},
}


class ReviewService:
    """Human review actions on persisted referrals."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def get(self, record_id: str) -> ReferralRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Referral {record_id} not found.")
        return record

    def set_status(self, record_id: str, status: ReferralStatus) -> ReferralRecord:
        record = self.get(record_id)
        if status not in _ALLOWED_TRANSITIONS.get(record.status, set()):
            raise InvalidStatusTransitionError(
                f"Referral {record_id} cannot move from {record.status.value} to {status.value}."
            )
        updated = record.model_copy(update={"status": status})
        self._records.put(updated)
        logger.info("Referral %s marked %s", record_id, status.value)
        return updated

    def update_fields(self, record_id: str, changes: Dict[str, Optional[str]]) -> ReferralRecord:
        blocked = sorted(set(changes) - EDITABLE_FIELDS)
        if blocked:
            raise ReviewValidationError(f"Fields cannot be edited: {', '.join(blocked)}.")

        record = self.get(record_id)
        if not changes:
            return record
        for key in ("patient_name", "referred_by", "referred_to", "diagnosis"):
            if key in changes and not (changes[key] or "").strip():
                raise ReviewValidationError(f"{key} cannot be empty.")

        updated = ReferralRecord.model_validate({**record.model_dump(), **changes})
        self._records.put(updated)
        logger.info("Referral %s edited: %s", record_id, ", ".join(sorted(changes)))
        return updated

    def archive(self, record_id: str) -> None:
        if not self._records.remove(record_id):
            raise RecordNotFoundError(f"Referral {record_id} not found.")
        logger.info("Referral %s archived", record_id)
