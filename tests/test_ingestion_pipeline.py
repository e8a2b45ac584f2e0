from __future__ import annotations

import asyncio
import io
import json
import threading
from typing import List, Optional

import httpx
import pytest
from docx import Document

from referral_intake.clients.blob_storage_client import BlobStorageClient
from referral_intake.core.config import settings
from referral_intake.core.errors import (
    ExtractionParseError,
    ExtractionServiceError,
    TextExtractionError,
    UnsupportedFormatError,
)
from referral_intake.services.content_extractor import decode_data_url
from referral_intake.services.extraction_client import ExtractionClient
from referral_intake.services.format_classifier import DOCX_MIME_TYPE
from referral_intake.services.ingestion_pipeline import IngestionPipeline, generate_referral_id
from referral_intake.services.llm_gateway import LLMGateway
from referral_intake.services.record_store import JsonRecordStore
from referral_intake.services.storage_resolver import StorageResolver

SAS_URL = "https://acct.blob.core.windows.net/referrals?sv=2023-11-03&sig=secret"
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00fax-page"


class _FakeUploadFile:
    def __init__(self, filename: str, data: bytes, content_type: str) -> None:
        self.filename = filename
        self.content_type = content_type
        self._data = data

    async def read(self) -> bytes:
        return self._data


class _FakeGateway:
    def __init__(self, response: Optional[dict] = None, error: Optional[Exception] = None) -> None:
        self._response = response
        self._error = error
        self.calls: List[list] = []

    @property
    def configured(self) -> bool:
        return True

    async def generate_json(self, parts, response_schema, system_instruction, temperature) -> str:
        self.calls.append(parts)
        if self._error is not None:
            raise self._error
        return json.dumps(self._response)


def _docx_bytes(*paragraphs: str) -> bytes:
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def _store(tmp_path) -> JsonRecordStore:
    store = JsonRecordStore(data_path=str(tmp_path / "referrals.json"), seed_samples=False)
    store.initialize()
    return store


def _pipeline(tmp_path, gateway, blob_client: Optional[BlobStorageClient] = None, id_factory=None):
    store = _store(tmp_path)
    pipeline = IngestionPipeline(
        extraction=ExtractionClient(gateway),
        storage=StorageResolver(blob_client),
        records=store,
        id_factory=id_factory,
    )
    return pipeline, store


def test_jpeg_referral_is_queued_for_review(tmp_path):
    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "John Doe",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "Cardiology",
            "Diagnosis": "I10",
        }
    )
    pipeline, store = _pipeline(tmp_path, gateway)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    record = out["record"]
    assert record["status"] == "pending"
    assert record["patient_name"] == "John Doe"
    assert record["referred_by"] == "Dr. Smith"
    assert record["referred_to"] == "Cardiology"
    assert record["diagnosis"] == "I10"
    assert record["file_path"]
    assert record["mime_type"] == "image/jpeg"
    assert record["id"].startswith("REF-")
    assert out["storage_kind"] == "local"
    assert out["stages"] == ["validating", "converting", "storing", "extracting", "assembling", "persisted"]

    sent = gateway.calls[0]
    assert sent[0]["inline_data"]["mime_type"] == "image/jpeg"
    assert not any(part.get("text", "").startswith("Document Text Content") for part in sent)

    stored = store.list()
    assert len(stored) == 1 and stored[0].id == record["id"]
    assert decode_data_url(stored[0].file_path) == JPEG_BYTES


def test_word_non_referral_is_recorded_as_rejected(tmp_path):
    gateway = _FakeGateway(
        response={
            "isReferral": False,
            "PatientName": "Jane Roe",
            "ReferredBy": "Unknown",
            "ReferredTo": "Unknown",
            "Diagnosis": "Unknown",
        }
    )
    pipeline, store = _pipeline(tmp_path, gateway)
    content = _docx_bytes("Patient: Jane Roe", "Shopping list: eggs, milk")

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("letter.docx", content, DOCX_MIME_TYPE)))

    assert out["record"]["status"] == "rejected"
    assert out["record"]["patient_name"] == "Jane Roe"
    sent = gateway.calls[0]
    assert sent[0]["text"].startswith("Document Text Content:\nPatient: Jane Roe")
    assert all("inline_data" not in part for part in sent)
    assert store.get(out["record"]["id"]) is not None


def test_word_branch_uses_extracted_text(tmp_path, monkeypatch):
    monkeypatch.setattr(
        "referral_intake.services.content_extractor.extract_docx_text",
        lambda content: "Patient: Jane Roe...",
    )
    gateway = _FakeGateway(
        response={
            "isReferral": False,
            "PatientName": "Jane Roe",
            "ReferredBy": "Unknown",
            "ReferredTo": "Unknown",
            "Diagnosis": "Unknown",
        }
    )
    pipeline, _ = _pipeline(tmp_path, gateway)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("letter.docx", b"PK\x03\x04", DOCX_MIME_TYPE)))

    assert out["record"]["status"] == "rejected"
    assert gateway.calls[0][0] == {"text": "Document Text Content:\nPatient: Jane Roe..."}


def test_unsupported_type_aborts_before_any_network_call(tmp_path):
    blob_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        blob_calls.append(request)
        return httpx.Response(201)

    gateway = _FakeGateway(response={})
    blob_client = BlobStorageClient(container_sas_url=SAS_URL, transport=httpx.MockTransport(handler))
    pipeline, store = _pipeline(tmp_path, gateway, blob_client=blob_client)

    with pytest.raises(UnsupportedFormatError):
        asyncio.run(pipeline.ingest(_FakeUploadFile("notes.txt", b"Patient: John", "text/plain")))

    assert gateway.calls == []
    assert blob_calls == []
    assert store.list() == []
    asyncio.run(blob_client.close())


def test_service_transport_error_aborts_without_writing(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection reset", request=request)

    gateway = LLMGateway(api_key="test-key", transport=httpx.MockTransport(handler))
    pipeline, store = _pipeline(tmp_path, gateway)

    with pytest.raises(ExtractionServiceError):
        asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    assert store.list() == []
    asyncio.run(gateway.close())


def test_schema_violation_aborts_without_writing(tmp_path):
    gateway = _FakeGateway(response={"isReferral": True, "PatientName": "John Doe"})
    pipeline, store = _pipeline(tmp_path, gateway)

    with pytest.raises(ExtractionParseError):
        asyncio.run(pipeline.ingest(_FakeUploadFile("fax.pdf", b"%PDF-1.4 fax", "application/pdf")))
    assert store.list() == []


def test_malformed_word_document_aborts_before_extraction(tmp_path):
    gateway = _FakeGateway(response={})
    pipeline, store = _pipeline(tmp_path, gateway)

    with pytest.raises(TextExtractionError):
        asyncio.run(pipeline.ingest(_FakeUploadFile("letter.docx", b"not a docx", DOCX_MIME_TYPE)))
    assert gateway.calls == []
    assert store.list() == []


def test_remote_storage_failure_still_completes_with_local_copy(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="ServerBusy")

    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "John Doe",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "Cardiology",
            "Diagnosis": "I10",
        }
    )
    blob_client = BlobStorageClient(container_sas_url=SAS_URL, transport=httpx.MockTransport(handler))
    pipeline, store = _pipeline(tmp_path, gateway, blob_client=blob_client)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    assert out["storage_kind"] == "local"
    assert out["record"]["file_path"].startswith("data:image/jpeg;base64,")
    assert out["record"]["storage_kind"] == "local"
    assert "503" in (out["warning"] or "")
    assert len(store.list()) == 1
    asyncio.run(blob_client.close())


def test_remote_storage_success_is_tagged_remote(tmp_path):
    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "",
            "Diagnosis": "I10",
            "Summary": "Handwritten note: urgent",
        }
    )
    blob_client = BlobStorageClient(
        container_sas_url=SAS_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(201)),
    )
    pipeline, _ = _pipeline(tmp_path, gateway, blob_client=blob_client)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    record = out["record"]
    assert record["storage_kind"] == "remote"
    assert record["file_path"].startswith("https://acct.blob.core.windows.net/referrals/")
    assert record["patient_name"] == "Unknown"
    assert record["referred_to"] == "Unknown"
    assert record["notes"] == "Handwritten note: urgent"
    asyncio.run(blob_client.close())


def test_identifier_collision_regenerates_id(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "id_generation_attempts", 3)
    ids = iter(["REF-1", "REF-1", "REF-2"])
    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "John Doe",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "Cardiology",
            "Diagnosis": "I10",
        }
    )
    pipeline, store = _pipeline(tmp_path, gateway, id_factory=lambda: next(ids))

    first = asyncio.run(pipeline.ingest(_FakeUploadFile("a.jpg", JPEG_BYTES, "image/jpeg")))
    second = asyncio.run(pipeline.ingest(_FakeUploadFile("b.jpg", JPEG_BYTES, "image/jpeg")))

    assert first["record"]["id"] == "REF-1"
    assert second["record"]["id"] == "REF-2"
    assert [r.id for r in store.list()] == ["REF-2", "REF-1"]


def test_generated_ids_use_ref_prefix_and_integer():
    values = [generate_referral_id() for _ in range(20)]
    assert all(v.startswith("REF-") and v[4:].isdigit() for v in values)
    assert all(len(v) >= len("REF-") + 16 for v in values)


def test_pdf_upload_is_sent_inline_and_kept_as_pdf_data_url(tmp_path):
    pdf_bytes = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF"
    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "Maria Lopez",
            "ReferredBy": "Dr. Patel",
            "ReferredTo": "Endocrinology",
            "Diagnosis": "E11.9",
        }
    )
    pipeline, store = _pipeline(tmp_path, gateway)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("referral.pdf", pdf_bytes, "application/pdf")))

    sent = gateway.calls[0]
    assert sent[0]["inline_data"]["mime_type"] == "application/pdf"
    assert all("Document Text Content" not in part.get("text", "") for part in sent)
    record = out["record"]
    assert record["mime_type"] == "application/pdf"
    assert record["file_path"].startswith("data:application/pdf;base64,")
    assert decode_data_url(record["file_path"]) == pdf_bytes
    assert store.get(record["id"]) is not None


def test_malformed_container_url_does_not_abort_ingest(tmp_path):
    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "John Doe",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "Cardiology",
            "Diagnosis": "I10",
        }
    )
    blob_client = BlobStorageClient(container_sas_url="https://acct.blob.core.windows.net:notaport/referrals?sig=x")
    pipeline, store = _pipeline(tmp_path, gateway, blob_client=blob_client)

    out = asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    assert out["storage_kind"] == "local"
    assert out["record"]["file_path"].startswith("data:image/jpeg;base64,")
    assert "remote storage skipped" in (out["warning"] or "")
    assert len(store.list()) == 1
    asyncio.run(blob_client.close())


def test_failed_extraction_waits_for_cancelled_storage(tmp_path):
    events: List[str] = []

    class _SlowBlobClient:
        configured = True

        async def upload(self, content, content_type, file_name):
            events.append("started")
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                events.append("cancelled")
                raise
            return "https://acct.blob.core.windows.net/referrals/never"

    class _FailingGateway(_FakeGateway):
        async def generate_json(self, parts, response_schema, system_instruction, temperature) -> str:
            await asyncio.sleep(0)
            raise ExtractionServiceError("Extraction service request failed: boom")

    pipeline, store = _pipeline(tmp_path, _FailingGateway(), blob_client=_SlowBlobClient())

    with pytest.raises(ExtractionServiceError):
        asyncio.run(pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg")))

    assert events == ["started", "cancelled"]
    assert store.list() == []


def test_record_store_writes_run_off_the_event_loop_thread(tmp_path):
    loop_threads: List[int] = []
    create_threads: List[int] = []

    class _RecordingStore(JsonRecordStore):
        def create(self, record):
            create_threads.append(threading.get_ident())
            super().create(record)

    gateway = _FakeGateway(
        response={
            "isReferral": True,
            "PatientName": "John Doe",
            "ReferredBy": "Dr. Smith",
            "ReferredTo": "Cardiology",
            "Diagnosis": "I10",
        }
    )
    store = _RecordingStore(data_path=str(tmp_path / "referrals.json"), seed_samples=False)
    store.initialize()
    pipeline = IngestionPipeline(
        extraction=ExtractionClient(gateway),
        storage=StorageResolver(None),
        records=store,
    )

    async def run():
        loop_threads.append(threading.get_ident())
        return await pipeline.ingest(_FakeUploadFile("fax.jpg", JPEG_BYTES, "image/jpeg"))

    out = asyncio.run(run())

    assert len(create_threads) == 1
    assert create_threads[0] != loop_threads[0]
    assert store.get(out["record"]["id"]) is not None
