"""Authoritative listing collection backed by durable storage."""
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from mtm_listings.config import config
from mtm_listings.errors import (
    ConfirmationRequired,
    InvalidTransition,
    NoImagesStaged,
    StoreNotReady,
)
from mtm_listings.models import (
    EDITABLE_FIELDS,
    AIAnalysis,
    Listing,
    ListingDraft,
    ListingImage,
    ListingStatus,
    utc_now,
)
from mtm_listings.store.storage import LISTINGS_KEY, SKU_COUNTER_KEY, KeyValueStorage

logger = logging.getLogger(__name__)

# Allowed status moves for stored listings. DRAFT never reaches the store.
TRANSITIONS: dict[ListingStatus, set[ListingStatus]] = {
    ListingStatus.PENDING: {ListingStatus.APPROVED},
    ListingStatus.APPROVED: {ListingStatus.EXPORTED},
    ListingStatus.EXPORTED: {ListingStatus.EXPORTED},
}

PATCHABLE_FIELDS = set(EDITABLE_FIELDS) | {"images", "ai_analysis", "sku"}


def generate_id() -> str:
    return uuid.uuid4().hex


class ListingStore:
    """In-memory listing collection that persists every mutation before returning.

    Lifecycle: construct with a storage backend, ``await initialize()`` to load
    state, then use. Mutations build the new collection, write it, and only
    swap it into memory once the write succeeded, so callers never observe a
    half-applied change.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        sku_prefix: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.sku_prefix = sku_prefix or config.SKU_PREFIX
        self.clock = clock
        self._listings: list[Listing] = []
        self._sku_counter = 1
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """Load listings and the SKU counter from storage."""
        await self.storage.initialize()
        raw_listings = await self.storage.get(LISTINGS_KEY) or []
        listings = []
        for raw in raw_listings:
            try:
                listings.append(Listing.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable stored listing: {e}")
        self._listings = listings

        stored_counter = await self.storage.get(SKU_COUNTER_KEY)
        counter = int(stored_counter) if stored_counter else 1
        # Never hand out a SKU that an existing listing already carries
        counter = max(counter, self._highest_sku_number() + 1)
        self._sku_counter = counter
        self._ready = True
        logger.info(f"Loaded {len(self._listings)} listings, next SKU #{self._sku_counter}")

    def _require_ready(self) -> None:
        if not self._ready:
            raise StoreNotReady("ListingStore.initialize() has not completed")

    def _highest_sku_number(self) -> int:
        pattern = re.compile(rf"^{re.escape(self.sku_prefix)}-(\d+)$")
        highest = 0
        for listing in self._listings:
            match = pattern.match(listing.sku)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    async def _commit(self, listings: list[Listing]) -> None:
        await self.storage.set(LISTINGS_KEY, [listing.to_json_dict() for listing in listings])
        self._listings = listings

    def _index(self, listing_id: str) -> int:
        for i, listing in enumerate(self._listings):
            if listing.id == listing_id:
                return i
        raise KeyError(f"Listing {listing_id} not found")

    # Reads

    def all(self) -> list[Listing]:
        self._require_ready()
        return [listing.model_copy(deep=True) for listing in self._listings]

    def get(self, listing_id: str) -> Optional[Listing]:
        self._require_ready()
        for listing in self._listings:
            if listing.id == listing_id:
                return listing.model_copy(deep=True)
        return None

    def get_by_sku(self, sku: str) -> Optional[Listing]:
        self._require_ready()
        for listing in self._listings:
            if listing.sku == sku:
                return listing.model_copy(deep=True)
        return None

    def exportable(self, query: Optional[str] = None) -> list[Listing]:
        """Approved and exported listings, optionally filtered by title/SKU/brand."""
        self._require_ready()
        listings = [
            listing
            for listing in self._listings
            if listing.status in (ListingStatus.APPROVED, ListingStatus.EXPORTED)
        ]
        if query:
            needle = query.lower()
            listings = [
                listing
                for listing in listings
                if needle in listing.title.lower()
                or needle in listing.sku.lower()
                or needle in listing.brand.lower()
            ]
        return [listing.model_copy(deep=True) for listing in listings]

    def stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Counts by status plus today's activity (local calendar day)."""
        self._require_ready()
        today = (now or self.clock()).astimezone().date()

        def is_today(moment: Optional[datetime]) -> bool:
            return moment is not None and moment.astimezone().date() == today

        return {
            "total": len(self._listings),
            "pending": sum(1 for item in self._listings if item.status == ListingStatus.PENDING),
            "approved": sum(1 for item in self._listings if item.status == ListingStatus.APPROVED),
            "exported": sum(1 for item in self._listings if item.status == ListingStatus.EXPORTED),
            "todayProcessed": sum(1 for item in self._listings if is_today(item.created_at)),
            "todayApproved": sum(1 for item in self._listings if is_today(item.approved_at)),
        }

    # Mutations

    async def issue_sku(self) -> str:
        """Issue the next SKU. The counter is persisted before the SKU is returned."""
        self._require_ready()
        number = self._sku_counter
        await self.storage.set(SKU_COUNTER_KEY, number + 1)
        self._sku_counter = number + 1
        sku = f"{self.sku_prefix}-{number:06d}"
        logger.debug(f"Issued SKU {sku}")
        return sku

    async def create(
        self,
        draft: ListingDraft,
        status: ListingStatus = ListingStatus.PENDING,
        images: Iterable[ListingImage] = (),
        ai_analysis: Optional[AIAnalysis] = None,
    ) -> Listing:
        """Create a listing from a draft and persist it."""
        self._require_ready()
        if status not in (ListingStatus.PENDING, ListingStatus.APPROVED):
            raise InvalidTransition(f"New listings start as pending or approved, not {status.value}")
        if not draft.sku:
            raise ValueError("Draft has no SKU")
        if any(listing.sku == draft.sku for listing in self._listings):
            raise ValueError(f"SKU {draft.sku} already exists")
        images = [image.model_copy(deep=True) for image in images]
        if status == ListingStatus.APPROVED and not images:
            raise NoImagesStaged("An approved listing needs at least one image")

        now = self.clock()
        listing = Listing(
            **draft.model_dump(exclude={"listing_id"}),
            id=generate_id(),
            status=status,
            images=images,
            ai_analysis=ai_analysis.model_copy(deep=True) if ai_analysis else None,
            created_at=now,
            updated_at=now,
            processed_at=now,
            approved_at=now if status == ListingStatus.APPROVED else None,
        )
        await self._commit([*self._listings, listing])
        logger.info(f"Created listing {listing.sku} ({listing.status.value})")
        return listing.model_copy(deep=True)

    async def update(self, listing_id: str, patch: Mapping[str, Any]) -> Listing:
        """Merge editable fields into a listing and restamp updatedAt."""
        self._require_ready()
        index = self._index(listing_id)
        current = self._listings[index]

        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")
        if "sku" in patch and current.sku and patch["sku"] != current.sku:
            raise ValueError(f"SKU of {current.sku} is immutable")

        data = current.model_dump()
        data.update(patch)
        data["updated_at"] = self.clock()
        updated = Listing.model_validate(data)
        if updated.status == ListingStatus.APPROVED and not updated.images:
            raise NoImagesStaged("An approved listing needs at least one image")

        listings = list(self._listings)
        listings[index] = updated
        await self._commit(listings)
        return updated.model_copy(deep=True)

    async def delete(self, listing_id: str) -> None:
        """Remove a listing. Blob storage is left to the caller."""
        self._require_ready()
        index = self._index(listing_id)
        removed = self._listings[index]
        await self._commit(self._listings[:index] + self._listings[index + 1:])
        logger.info(f"Deleted listing {removed.sku}")

    async def set_status(self, listing_ids: Iterable[str], status: ListingStatus) -> list[Listing]:
        """Move a batch of listings to ``status`` with one shared timestamp."""
        self._require_ready()
        ids = list(dict.fromkeys(listing_ids))
        indexes = [self._index(listing_id) for listing_id in ids]
        for index in indexes:
            current = self._listings[index]
            if status not in TRANSITIONS.get(current.status, set()):
                raise InvalidTransition(
                    f"{current.sku}: {current.status.value} -> {status.value} is not allowed"
                )
            if status == ListingStatus.APPROVED and not current.images:
                raise NoImagesStaged(f"{current.sku} has no images")

        now = self.clock()
        stamp = {"status": status, "updated_at": now}
        if status == ListingStatus.APPROVED:
            stamp["approved_at"] = now
        elif status == ListingStatus.EXPORTED:
            stamp["exported_at"] = now

        listings = list(self._listings)
        changed = []
        for index in indexes:
            updated = Listing.model_validate({**listings[index].model_dump(), **stamp})
            listings[index] = updated
            changed.append(updated)
        await self._commit(listings)
        return [listing.model_copy(deep=True) for listing in changed]

    async def approve(self, listing_id: str) -> Listing:
        """Admin approval of a pending listing."""
        (listing,) = await self.set_status([listing_id], ListingStatus.APPROVED)
        logger.info(f"Approved listing {listing.sku}")
        return listing

    async def export(self, listing_ids: Iterable[str]) -> list[Listing]:
        """Stamp a batch as exported."""
        listings = await self.set_status(listing_ids, ListingStatus.EXPORTED)
        logger.info(f"Marked {len(listings)} listings exported")
        return listings

    async def clear_all(self, confirmed: bool = False) -> int:
        """Delete every listing. The SKU counter is kept so SKUs are never reused."""
        self._require_ready()
        if not confirmed:
            raise ConfirmationRequired("Clear All must be confirmed")
        count = len(self._listings)
        await self._commit([])
        logger.warning(f"Cleared all {count} listings")
        return count
