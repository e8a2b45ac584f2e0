from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from referral_intake.core.config import settings
from referral_intake.core.errors import ExtractionServiceError


class LLMGateway:
    """Thin async client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.gemini_api_key
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._model = settings.gemini_model
        self._timeout = settings.extraction_timeout_sec
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def model(self) -> str:
        return self._model

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self._api_key or "", "Content-Type": "application/json"}

    async def generate_json(
        self,
        parts: List[Dict[str, Any]],
        response_schema: Dict[str, Any],
        system_instruction: str,
        temperature: float,
    ) -> str:
        if not self.configured:
            raise ExtractionServiceError(
                "Extraction service API key is missing. Set GEMINI_API_KEY (or API_KEY) and retry."
            )

        body = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
                "temperature": temperature,
            },
        }
        url = f"{self._base_url}/models/{self._model}:generateContent"
        try:
            r = await self._client.post(url, headers=self._headers(), json=body)
        except httpx.TimeoutException as exc:
            raise ExtractionServiceError(
                f"Extraction service timed out after {self._timeout:.0f}s. Please try again."
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionServiceError(f"Extraction service request failed: {exc}") from exc

        if r.status_code >= 400:
            raise ExtractionServiceError(
                f"Extraction service request failed with HTTP {r.status_code}: {self._error_excerpt(r)}"
            )
        try:
            raw = r.json()
        except ValueError as exc:
            raise ExtractionServiceError("Extraction service returned a non-JSON envelope.") from exc
        if not isinstance(raw, dict):
            raise ExtractionServiceError("Extraction service returned an unexpected envelope.")
        return self._collect_text(raw)

    @staticmethod
    def _collect_text(raw: Dict[str, Any]) -> str:
        candidates = raw.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return ""
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        return "".join(texts).strip()

    @staticmethod
    def _error_excerpt(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return (response.text or "").strip().replace("\n", " ")[:200]
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"].strip()
        return str(payload)[:200]
