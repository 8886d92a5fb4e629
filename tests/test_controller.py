"""Tests for the Upload -> Review -> Export workflow."""
import asyncio
from datetime import datetime, timezone

import orjson
import pytest

from mtm_listings.errors import (
    AnalysisInProgress,
    ConfirmationRequired,
    FatalExtractionError,
    InvalidTransition,
    MissingRequiredFields,
    NoImagesStaged,
    StorageError,
)
from mtm_listings.extract.adapter import ExtractionAdapter
from mtm_listings.ingest.ingest import ImageIngest, UploadFile
from mtm_listings.lifecycle.controller import ANALYSIS_WARNING, LifecycleController, Step
from mtm_listings.models import ListingStatus, Role
from mtm_listings.store.listing_store import ListingStore
from mtm_listings.store.staging import StagingArea

EXPORTED_AT = datetime(2026, 10, 19, 18, 50, tzinfo=timezone.utc)


class GatedExtractor:
    """Blocks inside generate() until released."""

    def __init__(self, text):
        self.text = text
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt, images):
        self.started.set()
        await self.release.wait()
        return self.text


@pytest.fixture
def build(storage, blob_store, extractor, policy, image_client):
    """Factory for an initialized controller over in-memory fakes."""

    def _build(role=Role.VENDOR, extractor=extractor):
        staging = StagingArea(storage)
        controller = LifecycleController(
            store=ListingStore(storage, sku_prefix="MTM"),
            staging=staging,
            ingest=ImageIngest(staging, blob_store, folder="mtm-listings"),
            adapter=ExtractionAdapter(extractor, http_client=image_client, policy=policy),
            role=role,
            vendor="",
        )
        asyncio.run(controller.initialize())
        return controller

    return _build


def photos(jpeg_bytes, count=3):
    return [UploadFile(f"loco{n}.jpg", "image/jpeg", jpeg_bytes) for n in range(count)]


def test_photo_to_approved_listing(build, jpeg_bytes):
    """Three photos, an analysis missing the road name, then a manual fix."""
    controller = build(role=Role.ADMIN)

    async def scenario():
        report = await controller.upload(photos(jpeg_bytes))
        assert len(report.images) == 3

        outcome = await controller.analyze()
        assert outcome.applied

        draft = controller.begin_review()
        assert draft.brand == "Kato"
        assert draft.scale == "1:160"
        assert draft.gauge == "N"
        assert draft.road_number == "1574"
        assert draft.road_name == ""

        with pytest.raises(MissingRequiredFields) as excinfo:
            await controller.approve()
        assert excinfo.value.missing == ["Road Name"]

        controller.update_field("road_name", "Burlington Northern")
        return await controller.approve()

    listing = asyncio.run(scenario())
    assert listing.sku == "MTM-000001"
    assert listing.status == ListingStatus.APPROVED
    assert listing.approved_at is not None
    assert len(listing.images) == 3
    assert listing.road_name == "Burlington Northern"
    assert listing.running_condition == "Runs well"
    assert listing.ai_analysis.brand == "Kato"

    assert controller.step == Step.EXPORT
    assert controller.draft is None
    assert controller.staging.images == []
    assert controller.staging.last_analysis is None
    assert controller.store.get_by_sku("MTM-000001") is not None


def test_vendor_submission_is_pending(build, jpeg_bytes):
    """A vendor's approve submits for review; only an admin approves."""
    vendor = build(role=Role.VENDOR)

    async def scenario():
        await vendor.upload(photos(jpeg_bytes, 1))
        await vendor.analyze()
        vendor.begin_review()
        vendor.update_field("road_name", "BNSF")
        return await vendor.approve()

    listing = asyncio.run(scenario())
    assert listing.status == ListingStatus.PENDING
    assert listing.approved_at is None
    with pytest.raises(InvalidTransition):
        asyncio.run(vendor.approve_listing(listing.id))

    admin = build(role=Role.ADMIN)
    approved = asyncio.run(admin.approve_listing(listing.id))
    assert approved.status == ListingStatus.APPROVED


def test_skus_increase_across_listings(build, jpeg_bytes):
    controller = build(role=Role.ADMIN)

    async def one_listing(road):
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", road)
        return await controller.approve()

    first = asyncio.run(one_listing("BNSF"))
    second = asyncio.run(one_listing("Union Pacific"))
    assert (first.sku, second.sku) == ("MTM-000001", "MTM-000002")


def test_explicit_running_condition_and_low_grade(build, jpeg_bytes, make_extractor):
    """Low grades derive N/A; a typed value is kept."""
    analysis = {
        "brand": "Bachmann",
        "scale": "1:87",
        "gauge": "HO",
        "locomotiveType": "Steam",
        "roadName": "Pennsylvania",
        "dcc": "DC",
        "packaging": "No box",
        "condition": 4,
    }
    controller = build(role=Role.ADMIN, extractor=make_extractor(orjson.dumps(analysis).decode()))

    async def scenario(running=None):
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        if running:
            controller.update_field("running_condition", running)
        return await controller.approve()

    assert asyncio.run(scenario()).running_condition == "N/A"
    assert asyncio.run(scenario("Runs rough")).running_condition == "Runs rough"


def test_reanalysis_keeps_manual_edits(build, jpeg_bytes):
    """A re-run with a null road name leaves the typed value alone."""
    controller = build()

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 2))
        controller.begin_review()
        controller.update_field("road_name", "Santa Fe")
        outcome = await controller.analyze()
        return outcome, controller.draft

    outcome, draft = asyncio.run(scenario())
    assert outcome.applied
    assert draft.road_name == "Santa Fe"
    assert draft.brand == "Kato"
    assert controller.has_unsaved_changes


def test_first_analysis_sets_the_baseline(build, jpeg_bytes):
    """Review opened before any analysis is not dirty once the analysis lands."""
    controller = build()

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        controller.begin_review()
        await controller.analyze()

    asyncio.run(scenario())
    assert controller.draft.brand == "Kato"
    assert not controller.has_unsaved_changes
    assert controller.navigate(Step.UPLOAD) == Step.UPLOAD


def test_reanalysis_reaches_a_saved_draft(build, jpeg_bytes, make_extractor):
    """A re-run while Review is closed is applied to the saved draft."""
    controller = build(extractor=make_extractor('{"brand": "Kato"}', '{"brand": "Atlas", "scale": "1:87"}'))

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "Conrail")
        await controller.save_draft()
        controller.navigate(Step.UPLOAD)

        outcome = await controller.analyze()
        assert outcome.applied
        return controller.begin_review()

    draft = asyncio.run(scenario())
    assert draft.brand == "Atlas"
    assert draft.scale == "1:87"
    assert draft.road_name == "Conrail"
    assert controller.staging.saved_draft.brand == "Atlas"


def test_storage_failure_keeps_the_draft(build, storage, jpeg_bytes):
    """Failed Save and Approve raise and leave the in-memory edits alone."""
    controller = build(role=Role.ADMIN)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "Burlington Northern")

        storage.fail_writes = True
        with pytest.raises(StorageError):
            await controller.save_draft()
        with pytest.raises(StorageError):
            await controller.approve()

        assert controller.draft.road_name == "Burlington Northern"
        assert controller.has_unsaved_changes
        assert controller.step == Step.REVIEW
        assert controller.store.all() == []

        storage.fail_writes = False
        return await controller.approve()

    listing = asyncio.run(scenario())
    assert listing.sku == "MTM-000001"
    assert listing.road_name == "Burlington Northern"


def test_unparseable_analysis_leaves_draft(build, jpeg_bytes, make_extractor):
    controller = build(extractor=make_extractor("I can't tell, sorry."))

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        controller.begin_review()
        controller.update_field("brand", "Atlas")
        return await controller.analyze()

    outcome = asyncio.run(scenario())
    assert not outcome.applied
    assert outcome.warning == ANALYSIS_WARNING
    assert outcome.result.raw_response == "I can't tell, sorry."
    assert controller.draft.brand == "Atlas"
    assert controller.staging.last_analysis is None


def test_transport_failure_propagates(build, jpeg_bytes, make_extractor):
    controller = build(extractor=make_extractor(FatalExtractionError("401")))

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()

    with pytest.raises(FatalExtractionError):
        asyncio.run(scenario())
    assert not controller.is_analyzing


def test_analyze_requires_images(build):
    controller = build()
    with pytest.raises(NoImagesStaged):
        asyncio.run(controller.analyze())
    with pytest.raises(NoImagesStaged):
        controller.begin_review()


def test_stale_analysis_is_discarded(build, jpeg_bytes):
    """A result landing after the draft was rejected is dropped."""
    extractor = GatedExtractor('{"brand": "Kato"}')
    controller = build(extractor=extractor)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        controller.begin_review()

        task = asyncio.create_task(controller.analyze())
        await extractor.started.wait()
        with pytest.raises(AnalysisInProgress):
            await controller.analyze()

        await controller.reject(confirmed=True)
        extractor.release.set()
        return await task

    outcome = asyncio.run(scenario())
    assert not outcome.applied
    assert controller.draft is None
    assert controller.staging.last_analysis is None
    assert controller.step == Step.UPLOAD


def test_reject_requires_confirmation(build, blob_store, jpeg_bytes):
    controller = build()

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 2))
        controller.begin_review()
        with pytest.raises(ConfirmationRequired):
            await controller.reject()
        assert len(controller.staging.images) == 2
        return await controller.reject(confirmed=True)

    assert asyncio.run(scenario()) == 2
    assert controller.staging.images == []
    assert sorted(blob_store.deleted) == ["mtm-listings/1", "mtm-listings/2"]
    assert controller.store.all() == []


def test_leaving_review_with_unsaved_changes(build, jpeg_bytes):
    """Navigation warns about unsaved edits; a saved draft comes back."""
    controller = build()

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        controller.begin_review()
        controller.update_field("brand", "Walthers")
        with pytest.raises(ConfirmationRequired):
            controller.navigate(Step.UPLOAD)

        await controller.save_draft()
        assert not controller.has_unsaved_changes
        controller.navigate(Step.UPLOAD)
        assert controller.draft is None
        return controller.begin_review()

    draft = asyncio.run(scenario())
    assert draft.brand == "Walthers"


def test_discarding_unsaved_changes_with_confirmation(build, jpeg_bytes):
    controller = build()
    asyncio.run(controller.upload(photos(jpeg_bytes, 1)))
    controller.begin_review()
    controller.update_field("brand", "Walthers")
    assert controller.navigate(Step.EXPORT, confirmed=True) == Step.EXPORT
    assert controller.draft is None


def test_edit_stored_listing(build, jpeg_bytes):
    """Opening a stored listing saves back into it without a new SKU."""
    controller = build(role=Role.ADMIN)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "BNSF")
        listing = await controller.approve()

        controller.open_listing(listing.id)
        controller.update_lines("defects", "Missing horn\n\nBent handrail")
        await controller.save_draft()
        return listing

    listing = asyncio.run(scenario())
    stored = controller.store.get(listing.id)
    assert stored.defects == ["Missing horn", "Bent handrail"]
    assert stored.sku == listing.sku
    assert len(controller.store.all()) == 1


def test_export_stamps_listings(build, jpeg_bytes, tmp_path):
    """The file shows the pre-export status; the store is stamped after."""
    controller = build(role=Role.ADMIN)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "BNSF")
        await controller.approve()
        return await controller.export("csv", directory=tmp_path, now=EXPORTED_AT)

    outcome = asyncio.run(scenario())
    row = outcome.content.split("\n")[1]
    assert ",approved," in row
    assert outcome.path == tmp_path / "sixbit-export-2026-10-19.csv"
    assert outcome.path.read_text(encoding="utf-8") == outcome.content
    assert [listing.status for listing in outcome.listings] == [ListingStatus.EXPORTED]
    assert controller.store.all()[0].exported_at is not None

    again = asyncio.run(controller.export("xml", write=False, now=EXPORTED_AT))
    assert "<Status>exported</Status>" in again.content
    assert again.path is None


def test_export_with_nothing_approved(build, jpeg_bytes):
    controller = build(role=Role.VENDOR)
    with pytest.raises(ValueError):
        asyncio.run(controller.export("csv", write=False))


def test_clear_all(build, jpeg_bytes):
    """Clear All empties listings and the staged batch; SKUs keep counting."""
    controller = build(role=Role.ADMIN)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 1))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "BNSF")
        await controller.approve()
        await controller.upload(photos(jpeg_bytes, 1))

        with pytest.raises(ConfirmationRequired):
            await controller.clear_all()
        return await controller.clear_all(confirmed=True)

    assert asyncio.run(scenario()) == 1
    assert controller.store.all() == []
    assert controller.staging.images == []
    assert controller.stats()["total"] == 0
    assert asyncio.run(controller.store.issue_sku()) == "MTM-000002"


def test_remove_image(build, jpeg_bytes):
    controller = build()
    report = asyncio.run(controller.upload(photos(jpeg_bytes, 2)))
    assert asyncio.run(controller.remove_image(report.images[0].id))
    assert len(controller.staging.images) == 1


def test_delete_listing(build, blob_store, jpeg_bytes):
    controller = build(role=Role.ADMIN)

    async def scenario():
        await controller.upload(photos(jpeg_bytes, 2))
        await controller.analyze()
        controller.begin_review()
        controller.update_field("road_name", "BNSF")
        listing = await controller.approve()
        await controller.delete_listing(listing.id, delete_images=True)
        return listing

    asyncio.run(scenario())
    assert controller.store.all() == []
    assert sorted(blob_store.deleted) == ["mtm-listings/1", "mtm-listings/2"]
    with pytest.raises(KeyError):
        asyncio.run(controller.delete_listing("missing"))
