"""Image ingest: validate uploads, store them, stage them for review."""
import asyncio
import base64
import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import aiofiles

from mtm_listings.config import config
from mtm_listings.errors import BlobStoreError, FileRejected, StorageError
from mtm_listings.ingest.blob_store import BlobStore
from mtm_listings.models import ListingImage
from mtm_listings.store.staging import StagingArea

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/heic", "image/webp")

# mimetypes does not know HEIC on every platform
mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/webp", ".webp")


@dataclass
class UploadFile:
    """A raw file handed to the ingest step."""

    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    async def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "UploadFile":
        path = Path(path)
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, mime_type=mime_type or guessed or "application/octet-stream", data=data)


@dataclass
class IngestReport:
    """Outcome of a batch: stored images in completion order plus per-file rejections."""

    images: list[ListingImage] = field(default_factory=list)
    errors: list[FileRejected] = field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [error.reason for error in self.errors]


def validate_file(file: UploadFile, max_bytes: Optional[int] = None) -> Optional[str]:
    """Return a reason string if the file is unacceptable."""
    max_bytes = max_bytes if max_bytes is not None else config.MAX_UPLOAD_MB * 1024 * 1024
    if file.mime_type not in ALLOWED_MIME_TYPES:
        return f"{file.name} is not a supported image format"
    if file.size > max_bytes:
        return f"{file.name} exceeds {max_bytes // (1024 * 1024)}MB limit"
    return None


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ImageIngest:
    """Turns uploaded files into staged ListingImages."""

    def __init__(
        self,
        staging: StagingArea,
        blob_store: Optional[BlobStore] = None,
        folder: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ):
        self.staging = staging
        self.blob_store = blob_store
        self.folder = folder or config.CLOUDINARY_FOLDER
        self.max_bytes = max_bytes

    async def ingest(self, file: UploadFile, sequence: int = 0) -> ListingImage:
        """Validate, store and stage one file. Raises FileRejected."""
        reason = validate_file(file, self.max_bytes)
        if reason:
            raise FileRejected(file.name, reason)

        image = await self._store(file, sequence)
        try:
            await self.staging.append_image(image)
        except StorageError as e:
            logger.error(f"Could not stage {file.name}: {e}")
            if image.external_ref and self.blob_store is not None:
                await self.blob_store.delete(image.external_ref)
            raise
        return image

    async def _store(self, file: UploadFile, sequence: int) -> ListingImage:
        image_id = uuid.uuid4().hex
        if self.blob_store is not None:
            try:
                blob = await self.blob_store.store(file.data, file.mime_type, self.folder)
                return ListingImage(
                    id=image_id,
                    name=file.name,
                    mime_type=file.mime_type,
                    byte_size=blob.byte_size or file.size,
                    url=blob.url,
                    external_ref=blob.external_ref,
                    pixel_width=blob.width,
                    pixel_height=blob.height,
                    sequence=sequence,
                )
            except BlobStoreError as e:
                logger.warning(f"Blob upload failed for {file.name}, falling back to inline: {e}")

        return ListingImage(
            id=image_id,
            name=file.name,
            mime_type=file.mime_type,
            byte_size=file.size,
            url=to_data_uri(file.data, file.mime_type),
            sequence=sequence,
        )

    async def ingest_batch(self, files: Iterable[UploadFile]) -> IngestReport:
        """Ingest many files; invalid ones are reported, the rest still go through."""
        report = IngestReport()
        accepted = []
        for sequence, file in enumerate(files):
            reason = validate_file(file, self.max_bytes)
            if reason:
                report.errors.append(FileRejected(file.name, reason))
            else:
                accepted.append((sequence, file))

        tasks = [asyncio.ensure_future(self.ingest(file, sequence)) for sequence, file in accepted]
        try:
            for next_done in asyncio.as_completed(tasks):
                report.images.append(await next_done)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if report.errors:
            logger.info(f"Rejected {len(report.errors)} of {len(report.errors) + len(accepted)} files")
        return report

    async def remove(self, image_id: str) -> bool:
        """Delete a staged image, trying the blob store first.

        A failed remote delete is logged and local removal still happens.
        """
        image = self.staging.find_image(image_id)
        if image is None:
            return False
        if image.external_ref and self.blob_store is not None:
            if not await self.blob_store.delete(image.external_ref):
                logger.warning(f"Remote delete failed for {image.name}, removing locally anyway")
        return await self.staging.remove_image(image_id)

    async def discard_all(self, delete_remote: bool = True) -> int:
        """Drop the whole staged batch (images, analysis, draft)."""
        images = self.staging.images
        if delete_remote and self.blob_store is not None:
            for image in images:
                if image.external_ref and not await self.blob_store.delete(image.external_ref):
                    logger.warning(f"Remote delete failed for {image.name}")
        await self.staging.clear()
        return len(images)
