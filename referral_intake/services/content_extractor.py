from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass
from typing import List, Optional

from docx import Document

from referral_intake.core.errors import TextExtractionError
from referral_intake.models.schemas import BinaryPayload, DocumentCategory

WORD_PARSE_FAILURE_MESSAGE = "Failed to read Word document. Please ensure it is a valid .docx file."


@dataclass(frozen=True)
class ConvertedContent:
    category: DocumentCategory
    mime_type: str
    data_url: str
    binary: Optional[BinaryPayload] = None
    text: Optional[str] = None


def encode_base64(content: bytes) -> str:
    return base64.b64encode(content).decode("ascii")


def build_data_url(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{encode_base64(content)}"


def decode_data_url(data_url: str) -> bytes:
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("not a base64 data URL")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc


def extract_docx_text(content: bytes) -> str:
    """Plain text of a .docx body: paragraphs first, then table rows."""
    try:
        doc = Document(io.BytesIO(content))
        chunks: List[str] = []
        for para in doc.paragraphs:
            text = (para.text or "").strip()
            if text:
                chunks.append(text)
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                row_text = " | ".join(value for value in cells if value)
                if row_text:
                    chunks.append(row_text)
    except Exception as exc:
        # python-docx surfaces zip, package and lxml errors with unrelated types.
        raise TextExtractionError(WORD_PARSE_FAILURE_MESSAGE) from exc

    text = "\n".join(chunks).strip()
    if not text:
        raise TextExtractionError("The Word document does not contain any readable text.")
    return text


def convert(content: bytes, category: DocumentCategory, mime_type: str) -> ConvertedContent:
    data_url = build_data_url(content, mime_type)
    if category == DocumentCategory.WORD:
        return ConvertedContent(
            category=category,
            mime_type=mime_type,
            data_url=data_url,
            text=extract_docx_text(content),
        )
    return ConvertedContent(
        category=category,
        mime_type=mime_type,
        data_url=data_url,
        binary=BinaryPayload(mime_type=mime_type, data=encode_base64(content)),
    )
