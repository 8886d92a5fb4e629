"""Extraction adapter: images in, AIAnalysis (or raw text) out."""
import asyncio
import base64
import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import urlparse
from urllib.request import url2pathname

import aiofiles
import httpx
import orjson
from pydantic import ValidationError

from mtm_listings.config import config
from mtm_listings.extract.gemini import Extractor, InlineImage
from mtm_listings.extract.prompt import ANALYSIS_PROMPT
from mtm_listings.extract.retry import RetryPolicy, call_with_policy
from mtm_listings.models import AIAnalysis

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.+)$", re.DOTALL)
FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")


@dataclass
class ExtractionResult:
    """Transport succeeded. ``analysis`` is None when the text could not be parsed."""

    analysis: Optional[AIAnalysis]
    raw_response: str
    parse_error: Optional[str] = None
    image_count: int = 0

    @property
    def ok(self) -> bool:
        return self.analysis is not None


def strip_fences(text: str) -> str:
    """Unwrap a ```json fenced block if there is one."""
    match = FENCE_RE.search(text)
    if match:
        return match.group(1)
    return text.strip()


def parse_analysis(text: str) -> AIAnalysis:
    """Parse extractor text into an AIAnalysis. Raises ValueError."""
    try:
        data = orjson.loads(strip_fences(text))
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    try:
        return AIAnalysis.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Response does not match the analysis schema: {e}") from e


class ExtractionAdapter:
    """Resolves images, calls the extractor under a retry policy, parses the reply."""

    def __init__(
        self,
        extractor: Extractor,
        http_client: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        max_images: Optional[int] = None,
        prompt: str = ANALYSIS_PROMPT,
    ):
        self.extractor = extractor
        self.http_client = http_client or httpx.AsyncClient(timeout=config.EXTRACT_TIMEOUT)
        self.policy = policy or RetryPolicy()
        self.max_images = max_images or config.EXTRACT_MAX_IMAGES
        self.prompt = prompt

    async def resolve_image(self, url: str) -> Optional[InlineImage]:
        """Turn a data URI, file:// or http(s) URL into inline base64."""
        match = DATA_URI_RE.match(url)
        if match:
            return InlineImage(mime_type=match.group("mime"), data=match.group("data"))

        parsed = urlparse(url)
        try:
            if parsed.scheme == "file":
                path = url2pathname(parsed.path)
                async with aiofiles.open(path, "rb") as f:
                    content = await f.read()
                mime_type = mimetypes.guess_type(path)[0] or "image/jpeg"
            else:
                response = await self.http_client.get(url, follow_redirects=True)
                if response.status_code != 200:
                    logger.warning(f"Image fetch returned {response.status_code} for {url[:120]}")
                    return None
                content = response.content
                mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Error fetching image {url[:120]}: {e}")
            return None
        return InlineImage(mime_type=mime_type, data=base64.b64encode(content).decode("ascii"))

    async def analyze(self, image_urls: Sequence[str]) -> Optional[ExtractionResult]:
        """Run one extraction over at most ``max_images`` images.

        Returns None when there is nothing to send. Transport failures that
        survive the retry policy propagate as ExtractionError.
        """
        urls = list(image_urls)[: self.max_images]
        if not urls:
            return None

        resolved = await asyncio.gather(*(self.resolve_image(url) for url in urls))
        images = [image for image in resolved if image is not None]
        if not images:
            logger.warning(f"None of {len(urls)} images could be resolved")
            return None

        raw = await call_with_policy(
            self.policy, lambda: self.extractor.generate(self.prompt, images)
        )

        try:
            analysis = parse_analysis(raw)
        except ValueError as e:
            logger.error(f"Error parsing extractor response: {e}")
            return ExtractionResult(
                analysis=None,
                raw_response=raw,
                parse_error="Could not parse structured response",
                image_count=len(images),
            )
        logger.info(
            f"Extracted {analysis.brand or 'unknown brand'} {analysis.scale or ''} "
            f"(confidence {analysis.confidence}) from {len(images)} images"
        )
        return ExtractionResult(analysis=analysis, raw_response=raw, image_count=len(images))
