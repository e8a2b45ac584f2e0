from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from referral_intake.core.config import settings
from referral_intake.core.errors import DuplicateRecordError
from referral_intake.models.schemas import ReferralRecord, ReferralStatus

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def initialize(self) -> None: ...

    def list(self, status: Optional[ReferralStatus] = None, search: Optional[str] = None) -> List[ReferralRecord]: ...

    def get(self, record_id: str) -> Optional[ReferralRecord]: ...

    def put(self, record: ReferralRecord) -> None: ...

    def create(self, record: ReferralRecord) -> None: ...

    def remove(self, record_id: str) -> bool: ...


class JsonRecordStore:
    """Referral records in a single JSON file, newest first, last write wins."""

    def __init__(
        self,
        data_path: Optional[str] = None,
        sample_path: Optional[str] = None,
        seed_samples: Optional[bool] = None,
    ) -> None:
        self._path = Path(data_path or settings.records_data_path)
        self._sample_path = Path(sample_path or settings.sample_data_path)
        self._seed_samples = settings.seed_sample_records if seed_samples is None else seed_samples
        self._lock = threading.Lock()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.exists():
            return
        rows: List[Dict] = []
        if self._seed_samples:
            rows = self._load_json(self._sample_path)
            logger.info("Seeding record store with %d sample referrals", len(rows))
        self._path.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")

    def list(self, status: Optional[ReferralStatus] = None, search: Optional[str] = None) -> List[ReferralRecord]:
        needle = (search or "").strip().lower()
        out: List[ReferralRecord] = []
        for record in self._load_records():
            if status is not None and record.status != status:
                continue
            if needle and needle not in record.patient_name.lower() and needle not in record.id.lower():
                continue
            out.append(record)
        return out

    def count(self) -> int:
        return len(self._load_json(self._path))

    def get(self, record_id: str) -> Optional[ReferralRecord]:
        for record in self._load_records():
            if record.id == record_id:
                return record
        return None

    def put(self, record: ReferralRecord) -> None:
        with self._lock:
            rows = self._load_json(self._path)
            payload = record.model_dump(mode="json")
            for idx, row in enumerate(rows):
                if str(row.get("id")) == record.id:
                    rows[idx] = payload
                    break
            else:
                rows.insert(0, payload)
            self._write(rows)

    def create(self, record: ReferralRecord) -> None:
        with self._lock:
            rows = self._load_json(self._path)
            if any(str(row.get("id")) == record.id for row in rows):
                raise DuplicateRecordError(f"Referral {record.id} already exists.")
            rows.insert(0, record.model_dump(mode="json"))
            self._write(rows)

    def remove(self, record_id: str) -> bool:
        with self._lock:
            rows = self._load_json(self._path)
            kept = [row for row in rows if str(row.get("id")) != record_id]
            if len(kept) == len(rows):
                return False
            self._write(kept)
            return True

    def _load_records(self) -> List[ReferralRecord]:
        return [ReferralRecord.model_validate(row) for row in self._load_json(self._path)]

    def _write(self, rows: List[Dict]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    @staticmethod
    def _load_json(path: Path) -> List[Dict]:
        if not path.exists():
            return []
        return json.loads(path.read_text(encoding="utf-8"))
