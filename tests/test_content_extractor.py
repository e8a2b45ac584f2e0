from __future__ import annotations

import base64
import io

import pytest
from docx import Document

from referral_intake.core.errors import TextExtractionError
from referral_intake.models.schemas import DocumentCategory
from referral_intake.services.content_extractor import (
    build_data_url,
    convert,
    decode_data_url,
    encode_base64,
    extract_docx_text,
)
from referral_intake.services.format_classifier import DOCX_MIME_TYPE

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + bytes(range(256))


def _docx_bytes(*paragraphs: str, table_rows=None) -> bytes:
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def test_base64_and_data_url_decode_to_same_bytes():
    payload = encode_base64(JPEG_BYTES)
    data_url = build_data_url(JPEG_BYTES, "image/jpeg")

    assert not payload.startswith("data:")
    assert data_url.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(payload) == decode_data_url(data_url) == JPEG_BYTES


def test_decode_data_url_rejects_plain_urls():
    with pytest.raises(ValueError):
        decode_data_url("https://example.org/fax.jpg")


def test_convert_image_produces_binary_only():
    converted = convert(JPEG_BYTES, DocumentCategory.IMAGE, "image/jpeg")
    assert converted.text is None
    assert converted.binary is not None
    assert converted.binary.mime_type == "image/jpeg"
    assert base64.b64decode(converted.binary.data) == decode_data_url(converted.data_url)


def test_convert_word_produces_text_only():
    content = _docx_bytes("Patient: Jane Roe", "Reason for referral: knee pain")
    converted = convert(content, DocumentCategory.WORD, DOCX_MIME_TYPE)

    assert converted.binary is None
    assert converted.text == "Patient: Jane Roe\nReason for referral: knee pain"
    assert decode_data_url(converted.data_url) == content


def test_docx_tables_are_flattened_after_paragraphs():
    content = _docx_bytes("Referral form", table_rows=[["Patient", "Jane Roe"], ["Dx", "M54.5"]])
    text = extract_docx_text(content)
    assert text.splitlines() == ["Referral form", "Patient | Jane Roe", "Dx | M54.5"]


def test_invalid_word_document_raises():
    with pytest.raises(TextExtractionError) as exc_info:
        extract_docx_text(b"this is not a zip archive")
    assert "valid .docx" in str(exc_info.value)


def test_word_document_without_text_raises():
    with pytest.raises(TextExtractionError):
        extract_docx_text(_docx_bytes())
