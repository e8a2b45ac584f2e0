from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from referral_intake.core.config import settings
from referral_intake.core.errors import ExtractionParseError
from referral_intake.models.schemas import BinaryPayload, ExtractionResult
from referral_intake.services.llm_gateway import LLMGateway

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are an expert medical administrative assistant capable of reading complex, "
    "handwritten, and low-quality fax documents."
)

EXTRACTION_INSTRUCTIONS = """Analyze the provided document content (which may include an image, PDF pages, or extracted text).

Role: You are an expert medical intake automation system.

Goal: Extract structured data for the referral database.

Strict Rules:
1. 'isReferral': Set to true if the document contains ANY patient information, medical terminology, or looks like a form, letter, or note regarding a patient. Only set to false if it is clearly junk (e.g., a blank page, a picture of a cat).
2. 'PatientName': Look for patterns like "Patient:", "Name:", or capitalized names at the top.
3. 'Diagnosis': Look for "Dx", "Diagnosis", "Reason for referral", or ICD codes (e.g., M54.5).
4. Handwriting: The document might be handwritten. Do your best to decipher it.
5. If a field is not found, use "Unknown".

Output JSON only."""

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "isReferral": {
            "type": "BOOLEAN",
            "description": (
                "True if the document appears to be a medical referral, form, letter, or note. "
                "False only if clearly irrelevant (e.g. a landscape photo, recipe)."
            ),
        },
        "PatientName": {"type": "STRING", "description": "Full name of the patient"},
        "ReferredBy": {"type": "STRING", "description": "Name of referring physician or clinic"},
        "ReferredTo": {"type": "STRING", "description": "Name of physician or clinic being referred to"},
        "Diagnosis": {"type": "STRING", "description": "ICD code or diagnosis description"},
        "DOB": {"type": "STRING", "description": "Date of birth of the patient (YYYY-MM-DD)"},
        "ReferralDate": {"type": "STRING", "description": "Date of the referral (YYYY-MM-DD)"},
        "Summary": {
            "type": "STRING",
            "description": "Brief summary of the document content, including any handwritten notes if present.",
        },
    },
    "required": ["isReferral", "PatientName", "ReferredBy", "ReferredTo", "Diagnosis"],
}


class ExtractionClient:
    def __init__(self, gateway: LLMGateway) -> None:
        self._gateway = gateway
        self._temperature = settings.extraction_temperature

    @property
    def configured(self) -> bool:
        return self._gateway.configured

    async def extract(
        self,
        binary: Optional[BinaryPayload] = None,
        text: Optional[str] = None,
    ) -> ExtractionResult:
        parts = self.build_parts(binary=binary, text=text)
        # Transport and auth failures propagate as ExtractionServiceError, no retry.
        raw_text = await self._gateway.generate_json(
            parts=parts,
            response_schema=RESPONSE_SCHEMA,
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=self._temperature,
        )
        return self.parse_response(raw_text)

    @staticmethod
    def build_parts(binary: Optional[BinaryPayload] = None, text: Optional[str] = None) -> List[Dict[str, Any]]:
        if binary is None and not text:
            raise ValueError("extract() needs a binary payload or document text")

        parts: List[Dict[str, Any]] = []
        if binary is not None:
            parts.append({"inline_data": {"mime_type": binary.mime_type, "data": binary.data}})
        if text:
            parts.append({"text": f"Document Text Content:\n{text}"})
        parts.append({"text": EXTRACTION_INSTRUCTIONS})
        return parts

    @staticmethod
    def parse_response(raw_text: str) -> ExtractionResult:
        if not raw_text or not raw_text.strip():
            raise ExtractionParseError("The extraction service returned an empty response. Please try again.")
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            logger.warning("Extraction response is not valid JSON: %s", exc)
            raise ExtractionParseError("The extraction service returned malformed JSON. Please try again.") from exc
        if not isinstance(payload, dict):
            raise ExtractionParseError("The extraction service returned JSON that is not an object.")

        try:
            return ExtractionResult.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            logger.warning("Extraction response violated the schema: %s", ", ".join(fields))
            raise ExtractionParseError(
                f"The extraction service response is missing or has invalid fields: {', '.join(fields)}."
            ) from exc
