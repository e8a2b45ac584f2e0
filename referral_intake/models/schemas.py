from __future__ import annotations
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr

UNKNOWN = "Unknown"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class StorageKind(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class DocumentCategory(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    WORD = "word"


class IngestionStage(str, Enum):
    VALIDATING = "validating"
    CONVERTING = "converting"
    STORING = "storing"
    EXTRACTING = "extracting"
    ASSEMBLING = "assembling"
    PERSISTED = "persisted"
    ABORTED = "aborted"


class ReferralRecord(BaseModel):
    id: str
    patient_name: str = UNKNOWN
    referred_by: str = UNKNOWN
    referred_to: str = UNKNOWN
    diagnosis: str = UNKNOWN
    dob: Optional[str] = None
    referral_date: Optional[str] = None
    notes: Optional[str] = None
    file_path: str = Field(min_length=1)
    mime_type: str
    status: ReferralStatus = ReferralStatus.PENDING
    storage_kind: StorageKind = StorageKind.LOCAL
    created_at: Optional[str] = None


class BinaryPayload(BaseModel):
    mime_type: str
    data: str  # base64, no data-URL prefix


class ExtractionResult(BaseModel):
    """What the document-understanding service said, before any defaulting."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_referral: StrictBool = Field(alias="isReferral")
    patient_name: StrictStr = Field(alias="PatientName")
    referred_by: StrictStr = Field(alias="ReferredBy")
    referred_to: StrictStr = Field(alias="ReferredTo")
    diagnosis: StrictStr = Field(alias="Diagnosis")
    dob: Optional[StrictStr] = Field(default=None, alias="DOB")
    referral_date: Optional[StrictStr] = Field(default=None, alias="ReferralDate")
    summary: Optional[StrictStr] = Field(default=None, alias="Summary")


class UploadResponse(BaseModel):
    record: ReferralRecord
    storage_kind: StorageKind
    stages: List[IngestionStage] = Field(default_factory=list)
    warning: Optional[str] = None


class ReferralListResponse(BaseModel):
    items: List[ReferralRecord]
    count: int


class ReferralUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    patient_name: Optional[str] = None
    referred_by: Optional[str] = None
    referred_to: Optional[str] = None
    diagnosis: Optional[str] = None
    dob: Optional[str] = None
    referral_date: Optional[str] = None
    notes: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: ReferralStatus


class HealthResponse(BaseModel):
    status: str
    extraction: str
    storage: str
    records: int
