"""Drives Upload -> Review -> Export and the listing status machine."""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from mtm_listings.config import config
from mtm_listings.errors import (
    AnalysisInProgress,
    ConfirmationRequired,
    InvalidTransition,
    MissingRequiredFields,
    NoImagesStaged,
    StorageError,
)
from mtm_listings.export.sixbit import render
from mtm_listings.export.writer import write_export
from mtm_listings.extract.adapter import ExtractionAdapter, ExtractionResult
from mtm_listings.ingest.ingest import ImageIngest, IngestReport, UploadFile
from mtm_listings.lifecycle.required import missing_required_fields
from mtm_listings.models import Listing, ListingDraft, ListingStatus, Role, utc_now
from mtm_listings.reconcile.dirty import DraftEditor
from mtm_listings.reconcile.fields import derive_running_condition
from mtm_listings.reconcile.reconcile import reconcile
from mtm_listings.store.listing_store import ListingStore
from mtm_listings.store.staging import StagingArea

logger = logging.getLogger(__name__)

ANALYSIS_WARNING = "Could not fully analyze images, please fill in details manually"


class Step(str, Enum):
    UPLOAD = "upload"
    REVIEW = "review"
    EXPORT = "export"


@dataclass
class AnalyzeOutcome:
    """Result of an analyze/re-analyze request."""

    applied: bool
    result: Optional[ExtractionResult] = None
    warning: Optional[str] = None


@dataclass
class ExportOutcome:
    content: str
    fmt: str
    listings: list[Listing]
    path: Optional[Path] = None


class LifecycleController:
    """Supervises the workflow for a single user session.

    Owns the Review draft (through a DraftEditor) and reconciles it back into
    the ListingStore on Save/Approve.
    """

    def __init__(
        self,
        store: ListingStore,
        staging: StagingArea,
        ingest: ImageIngest,
        adapter: ExtractionAdapter,
        role: Role = Role.VENDOR,
        vendor: Optional[str] = None,
    ):
        self.store = store
        self.staging = staging
        self.ingest = ingest
        self.adapter = adapter
        self.role = role
        self.vendor = vendor if vendor is not None else (config.DEFAULT_VENDOR or "")
        self.step = Step.UPLOAD
        self.editor: Optional[DraftEditor] = None
        self._analyzing = False
        # Bumped whenever the draft is discarded; in-flight analyses compare against it
        self._generation = 0

    async def initialize(self) -> None:
        await self.store.initialize()
        await self.staging.initialize()

    @property
    def is_analyzing(self) -> bool:
        return self._analyzing

    @property
    def draft(self) -> Optional[ListingDraft]:
        return self.editor.draft if self.editor else None

    @property
    def has_unsaved_changes(self) -> bool:
        return self.editor is not None and self.editor.is_dirty

    def _require_editor(self) -> DraftEditor:
        if self.editor is None:
            raise InvalidTransition("No draft is under review")
        return self.editor

    def _drop_draft(self) -> None:
        self.editor = None
        self._generation += 1

    # Upload

    async def upload(self, files: Iterable[UploadFile]) -> IngestReport:
        report = await self.ingest.ingest_batch(files)
        logger.info(f"Staged {len(report.images)} images ({len(report.errors)} rejected)")
        return report

    async def remove_image(self, image_id: str) -> bool:
        return await self.ingest.remove(image_id)

    # Analysis

    async def analyze(self) -> AnalyzeOutcome:
        """Run extraction over the staged images and reconcile into the draft.

        Also used for re-analysis while reviewing; it is a same-state refresh,
        never a status transition. Transport errors propagate and leave the
        draft untouched.
        """
        if self._analyzing:
            raise AnalysisInProgress("An analysis is already running")
        urls = [image.url for image in self.staging.images]
        if not urls:
            raise NoImagesStaged("Upload at least one photo before analyzing")

        generation = self._generation
        self._analyzing = True
        try:
            result = await self.adapter.analyze(urls)
        finally:
            self._analyzing = False

        if generation != self._generation:
            logger.info("Draft was discarded while analysis ran, dropping the result")
            return AnalyzeOutcome(applied=False, result=result, warning="Analysis result discarded")
        if result is None or not result.ok:
            logger.warning(ANALYSIS_WARNING)
            return AnalyzeOutcome(applied=False, result=result, warning=ANALYSIS_WARNING)

        first_population = self.staging.last_analysis is None
        await self.staging.set_analysis(result.analysis)
        if self.editor is not None:
            reconciled = reconcile(self.editor.draft, result.analysis)
            if first_population and not self.editor.is_dirty and not reconciled.listing_id:
                # Baseline is the draft as first populated from analysis
                self.editor.reset_baseline(reconciled)
            else:
                self.editor.replace(reconciled)
        else:
            saved = self.staging.saved_draft
            if saved is not None:
                await self.staging.save_draft(reconcile(saved, result.analysis))
        return AnalyzeOutcome(applied=True, result=result)

    # Review

    def begin_review(self) -> ListingDraft:
        """Populate the draft from the saved draft or the last analysis."""
        if not self.staging.images:
            raise NoImagesStaged("Nothing to review, upload photos first")
        if self.editor is None:
            draft = self.staging.saved_draft
            if draft is None:
                draft = ListingDraft(vendor=self.vendor)
                analysis = self.staging.last_analysis
                if analysis is not None:
                    draft = reconcile(draft, analysis)
            self.editor = DraftEditor(draft)
        self.step = Step.REVIEW
        return self.editor.draft

    def open_listing(self, listing_id: str) -> ListingDraft:
        """Edit an already stored listing."""
        listing = self.store.get(listing_id)
        if listing is None:
            raise KeyError(f"Listing {listing_id} not found")
        self._drop_draft()
        self.editor = DraftEditor(listing.to_draft())
        self.step = Step.REVIEW
        return self.editor.draft

    def update_field(self, name: str, value: Any) -> None:
        self._require_editor().set_field(name, value)

    def update_lines(self, name: str, text: str) -> None:
        self._require_editor().set_lines(name, text)

    def missing_required_fields(self) -> list[str]:
        return missing_required_fields(self._require_editor().draft)

    async def save_draft(self) -> ListingDraft:
        """Persist the draft without changing status. Never gated on validation."""
        editor = self._require_editor()
        draft = editor.draft
        try:
            if draft.listing_id:
                await self.store.update(draft.listing_id, draft.editable_values())
            else:
                await self.staging.save_draft(draft)
        except StorageError as e:
            logger.error(f"Save failed, draft kept in memory: {e}")
            raise
        editor.mark_saved()
        return draft

    async def approve(self) -> Listing:
        """Vendor submits (pending) or admin approves (approved) the draft.

        Raises MissingRequiredFields listing the empty required fields.
        """
        editor = self._require_editor()
        draft = editor.draft
        missing = missing_required_fields(draft)
        if missing:
            raise MissingRequiredFields(missing)

        draft.running_condition = derive_running_condition(draft.condition, draft.running_condition)

        if draft.listing_id:
            listing = await self.store.update(draft.listing_id, draft.editable_values())
            if self.role == Role.ADMIN and listing.status == ListingStatus.PENDING:
                listing = await self.store.approve(listing.id)
            self._drop_draft()
            self.step = Step.EXPORT
            return listing

        images = self.staging.images
        if not images:
            raise NoImagesStaged("A listing needs at least one photo")

        if not draft.sku:
            draft.sku = await self.store.issue_sku()
        # Keep the derived values and SKU if create fails below
        editor.replace(draft)

        status = ListingStatus.APPROVED if self.role == Role.ADMIN else ListingStatus.PENDING
        try:
            listing = await self.store.create(
                draft,
                status=status,
                images=images,
                ai_analysis=self.staging.last_analysis,
            )
        except StorageError as e:
            logger.error(f"Approve failed, draft kept in memory: {e}")
            raise

        await self.staging.clear()
        self._drop_draft()
        self.step = Step.EXPORT
        logger.info(f"{'Approved' if status == ListingStatus.APPROVED else 'Submitted'} {listing.sku}")
        return listing

    async def reject(self, confirmed: bool = False) -> int:
        """Discard the draft and every staged image. Stored listings are untouched."""
        if not confirmed:
            raise ConfirmationRequired("Reject discards the draft and staged photos")
        editing_stored = self.editor is not None and self.editor.draft.listing_id
        self._drop_draft()
        discarded = 0 if editing_stored else await self.ingest.discard_all()
        self.step = Step.UPLOAD
        logger.info(f"Rejected draft, discarded {discarded} staged images")
        return discarded

    def navigate(self, step: Step, confirmed: bool = False) -> Step:
        """Move between screens; leaving Review with unsaved edits needs confirmation."""
        if self.step == Step.REVIEW and step != Step.REVIEW:
            if self.has_unsaved_changes and not confirmed:
                raise ConfirmationRequired("You have unsaved changes")
            self._drop_draft()
        self.step = step
        return step

    # Listings

    async def approve_listing(self, listing_id: str) -> Listing:
        if self.role != Role.ADMIN:
            raise InvalidTransition("Only an admin can approve a pending listing")
        return await self.store.approve(listing_id)

    async def delete_listing(self, listing_id: str, delete_images: bool = False) -> None:
        listing = self.store.get(listing_id)
        if listing is None:
            raise KeyError(f"Listing {listing_id} not found")
        await self.store.delete(listing_id)
        if delete_images and self.ingest.blob_store is not None:
            for image in listing.images:
                if image.external_ref:
                    await self.ingest.blob_store.delete(image.external_ref)

    async def export(
        self,
        fmt: str = "csv",
        listing_ids: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
        directory: Optional[Path] = None,
        write: bool = True,
        now: Optional[datetime] = None,
    ) -> ExportOutcome:
        """Render the selected (or all exportable) listings and stamp them exported.

        The file is rendered from the listings as they were before stamping.
        """
        listings = self.store.exportable(query)
        if listing_ids is not None:
            selected = set(listing_ids)
            listings = [listing for listing in listings if listing.id in selected]
        if not listings:
            raise ValueError("No approved listings to export")

        now = now or utc_now()
        content = render(listings, fmt, exported_at=now)
        path = None
        if write:
            path = await write_export(content, fmt, directory, today=now.date())
        stamped = await self.store.export([listing.id for listing in listings])
        self.step = Step.EXPORT
        return ExportOutcome(content=content, fmt=fmt, listings=stamped, path=path)

    async def clear_all(self, confirmed: bool = False) -> int:
        """Delete every listing and the staged batch."""
        count = await self.store.clear_all(confirmed)
        await self.ingest.discard_all(delete_remote=False)
        self._drop_draft()
        self.step = Step.UPLOAD
        return count

    def stats(self) -> dict[str, int]:
        return self.store.stats()
