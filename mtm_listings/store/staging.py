"""Persisted state of the in-progress upload batch and Review draft."""
import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from mtm_listings.models import AIAnalysis, ListingDraft, ListingImage
from mtm_listings.store.storage import ANALYSIS_KEY, DRAFT_KEY, IMAGES_KEY, KeyValueStorage

logger = logging.getLogger(__name__)


class StagingArea:
    """Staged images, last analysis snapshot and saved draft.

    Same write-then-swap discipline as ListingStore: memory only changes after
    the backend accepted the write.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._images: list[ListingImage] = []
        self._analysis: Optional[AIAnalysis] = None
        self._draft: Optional[ListingDraft] = None
        # Uploads append concurrently
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self.storage.initialize()
        images = []
        for raw in await self.storage.get(IMAGES_KEY) or []:
            try:
                images.append(ListingImage.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable staged image: {e}")
        self._images = images

        raw_analysis = await self.storage.get(ANALYSIS_KEY)
        self._analysis = AIAnalysis.model_validate(raw_analysis) if raw_analysis else None

        raw_draft = await self.storage.get(DRAFT_KEY)
        self._draft = ListingDraft.model_validate(raw_draft) if raw_draft else None
        if self._images:
            logger.info(f"Restored {len(self._images)} staged images")

    @property
    def images(self) -> list[ListingImage]:
        return [image.model_copy(deep=True) for image in self._images]

    @property
    def last_analysis(self) -> Optional[AIAnalysis]:
        return self._analysis.model_copy(deep=True) if self._analysis else None

    @property
    def saved_draft(self) -> Optional[ListingDraft]:
        return self._draft.model_copy(deep=True) if self._draft else None

    def find_image(self, image_id: str) -> Optional[ListingImage]:
        for image in self._images:
            if image.id == image_id:
                return image.model_copy(deep=True)
        return None

    async def append_image(self, image: ListingImage) -> None:
        async with self._lock:
            images = [*self._images, image]
            await self.storage.set(IMAGES_KEY, [img.to_json_dict() for img in images])
            self._images = images

    async def remove_image(self, image_id: str) -> bool:
        async with self._lock:
            images = [image for image in self._images if image.id != image_id]
            if len(images) == len(self._images):
                return False
            await self.storage.set(IMAGES_KEY, [img.to_json_dict() for img in images])
            self._images = images
            return True

    async def set_analysis(self, analysis: Optional[AIAnalysis]) -> None:
        if analysis is None:
            await self.storage.delete(ANALYSIS_KEY)
        else:
            await self.storage.set(ANALYSIS_KEY, analysis.to_json_dict())
        self._analysis = analysis.model_copy(deep=True) if analysis else None

    async def save_draft(self, draft: ListingDraft) -> None:
        await self.storage.set(DRAFT_KEY, draft.to_json_dict())
        self._draft = draft.model_copy(deep=True)

    async def clear(self) -> None:
        """Drop staged images, analysis and draft in one write."""
        async with self._lock:
            await self.storage.delete(IMAGES_KEY, ANALYSIS_KEY, DRAFT_KEY)
            self._images = []
            self._analysis = None
            self._draft = None
