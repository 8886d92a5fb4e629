"""FastAPI main application."""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from mtm_listings.config import config
from mtm_listings.errors import ExtractionError, InvalidTransition, NoImagesStaged
from mtm_listings.export.sixbit import export_filename
from mtm_listings.extract.adapter import ExtractionAdapter
from mtm_listings.extract.gemini import GeminiExtractor
from mtm_listings.ingest.blob_store import CloudinaryBlobStore, FolderBlobStore
from mtm_listings.ingest.ingest import ImageIngest
from mtm_listings.lifecycle.controller import LifecycleController
from mtm_listings.logging_conf import setup_logging
from mtm_listings.models import ListingStatus, Role
from mtm_listings.store.listing_store import ListingStore
from mtm_listings.store.staging import StagingArea
from mtm_listings.store.storage import SqliteStorage

logger = logging.getLogger(__name__)

app = FastAPI(title="MTM Listing Engine API", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)

MEDIA_TYPES = {"csv": "text/csv; charset=utf-8", "xml": "application/xml; charset=utf-8"}

_controller: Optional[LifecycleController] = None


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    if config.API_KEY:
        if not api_key or api_key != config.API_KEY:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


def build_controller() -> LifecycleController:
    """Wire the default SQLite-backed controller from configuration."""
    storage = SqliteStorage()
    staging = StagingArea(storage)
    blob_store = None
    if config.CLOUDINARY_CLOUD_NAME:
        blob_store = CloudinaryBlobStore()
    elif config.BLOB_DIR:
        blob_store = FolderBlobStore(Path(config.BLOB_DIR))
    else:
        logger.warning("No blob store configured, images will be stored inline")
    return LifecycleController(
        store=ListingStore(storage),
        staging=staging,
        ingest=ImageIngest(staging, blob_store),
        adapter=ExtractionAdapter(GeminiExtractor()),
        role=Role.ADMIN,
    )


def get_controller() -> LifecycleController:
    if _controller is None:
        raise HTTPException(status_code=503, detail="Listing store is not ready")
    return _controller


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    global _controller
    setup_logging()
    try:
        config.validate(require_extractor=True)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return
    _controller = build_controller()
    await _controller.initialize()


class AnalyzeRequest(BaseModel):
    """Request model for analysis."""
    image_urls: list[str] = Field(default_factory=list, alias="imageUrls")


class ExportRequest(BaseModel):
    ids: Optional[list[str]] = None
    query: Optional[str] = None


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store_ready": _controller is not None and _controller.store.ready,
    }


@app.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    """Run extraction over image URLs without touching the draft."""
    if not request.image_urls:
        raise HTTPException(status_code=400, detail="No image URLs provided")
    try:
        result = await controller.adapter.analyze(request.image_urls)
    except ExtractionError as e:
        logger.error(f"Analyze failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to analyze images", "details": str(e)},
        )
    if result is None:
        raise HTTPException(status_code=400, detail="Could not process any images")

    body = {
        "success": True,
        "analysis": result.analysis.to_json_dict() if result.analysis else None,
        "rawResponse": result.raw_response,
    }
    if result.parse_error:
        body["parseError"] = result.parse_error
    return body


@app.get("/listings")
async def list_listings(
    status: Optional[ListingStatus] = None,
    q: Optional[str] = None,
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    listings = controller.store.all() if q is None else controller.store.exportable(q)
    if status is not None:
        listings = [listing for listing in listings if listing.status == status]
    return {"listings": [listing.to_json_dict() for listing in listings]}


@app.get("/stats")
async def stats(
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    return controller.stats()


@app.post("/listings/{listing_id}/approve")
async def approve_listing(
    listing_id: str,
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    try:
        listing = await controller.approve_listing(listing_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Listing not found")
    except (InvalidTransition, NoImagesStaged) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return listing.to_json_dict()


@app.delete("/listings/{listing_id}")
async def delete_listing(
    listing_id: str,
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    try:
        await controller.delete_listing(listing_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Listing not found")
    return {"deleted": listing_id}


@app.post("/export/{fmt}")
async def export(
    fmt: str,
    request: ExportRequest,
    controller: LifecycleController = Depends(get_controller),
    _: bool = Depends(verify_api_key),
):
    """Render a SixBit file and stamp the included listings exported."""
    if fmt not in MEDIA_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown export format: {fmt}")
    try:
        outcome = await controller.export(fmt, listing_ids=request.ids, query=request.query, write=False)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    filename = export_filename(fmt)
    return Response(
        content=outcome.content,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":
    import uvicorn
    setup_logging()
    config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
