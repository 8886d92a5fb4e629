"""Gemini generateContent client used as the extraction collaborator."""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import httpx

from mtm_listings.config import config
from mtm_listings.errors import FatalExtractionError, RetryableExtractionError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 503)


@dataclass
class InlineImage:
    """One image in the form the extractor consumes."""

    mime_type: str
    data: str  # base64


class Extractor(Protocol):
    async def generate(self, prompt: str, images: Sequence[InlineImage]) -> str: ...


def is_overloaded(status_code: int, body: str) -> bool:
    return status_code in RETRYABLE_STATUS or "overloaded" in body.lower()


class GeminiExtractor:
    """Sends the rubric plus inline images and returns the model's raw text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or config.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY is not set")
        self.model = model or config.GEMINI_MODEL
        self.base_url = (base_url or config.GEMINI_BASE_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout or config.EXTRACT_TIMEOUT)

    async def aclose(self) -> None:
        await self.client.aclose()

    def _payload(self, prompt: str, images: Sequence[InlineImage]) -> dict:
        parts = [{"text": prompt}]
        for image in images:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})
        return {"contents": [{"role": "user", "parts": parts}]}

    async def generate(self, prompt: str, images: Sequence[InlineImage]) -> str:
        """One generateContent call. Raises Retryable/FatalExtractionError."""
        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            response = await self.client.post(
                url,
                params={"key": self.api_key},
                json=self._payload(prompt, images),
            )
        except httpx.TimeoutException as e:
            raise FatalExtractionError(f"Extractor timed out: {e}") from e
        except httpx.HTTPError as e:
            raise FatalExtractionError(f"Extractor request failed: {e}") from e

        if response.status_code != 200:
            body = response.text[:500]
            if is_overloaded(response.status_code, body):
                raise RetryableExtractionError(f"Extractor overloaded ({response.status_code})")
            raise FatalExtractionError(f"Extractor returned {response.status_code}: {body}")

        try:
            payload = response.json()
        except ValueError as e:
            raise FatalExtractionError(f"Extractor returned non-JSON body: {e}") from e
        return self._text_of(payload)

    def _text_of(self, payload: dict) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            feedback = payload.get("promptFeedback") or {}
            raise FatalExtractionError(f"Extractor returned no candidates: {feedback}")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
