from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

from referral_intake.core.errors import UnsupportedFormatError
from referral_intake.models.schemas import DocumentCategory

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MIME_TYPE = "application/pdf"

ACCEPTED_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/webp",
        PDF_MIME_TYPE,
        DOCX_MIME_TYPE,
    }
)

# Only consulted when the client did not declare a usable content type.
_EXTENSION_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "pdf": PDF_MIME_TYPE,
    "docx": DOCX_MIME_TYPE,
}

_UNDECLARED_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

UNSUPPORTED_FORMAT_MESSAGE = (
    "Please upload a valid file: Image (JPG, PNG, WEBP), PDF, or Word Document (.docx)."
)


def normalize_mime_type(content_type: Optional[str]) -> str:
    # "image/png; charset=binary" -> "image/png"
    return (content_type or "").split(";", 1)[0].strip().lower()


def resolve_mime_type(content_type: Optional[str], file_name: Optional[str] = None) -> str:
    mime_type = normalize_mime_type(content_type)
    if mime_type in _UNDECLARED_TYPES and file_name:
        suffix = Path(file_name).suffix.lower().lstrip(".")
        return _EXTENSION_MIME_TYPES.get(suffix, mime_type)
    return mime_type


def classify(content_type: Optional[str], file_name: Optional[str] = None) -> Tuple[DocumentCategory, str]:
    """Pick the conversion strategy for an upload.

    Returns the category together with the resolved media type. Anything
    outside ``ACCEPTED_MIME_TYPES`` is rejected before any conversion work.
    """
    mime_type = resolve_mime_type(content_type, file_name)
    if mime_type not in ACCEPTED_MIME_TYPES:
        raise UnsupportedFormatError(UNSUPPORTED_FORMAT_MESSAGE)

    if mime_type == DOCX_MIME_TYPE:
        return DocumentCategory.WORD, mime_type
    if mime_type == PDF_MIME_TYPE:
        return DocumentCategory.PDF, mime_type
    return DocumentCategory.IMAGE, mime_type
