"""Blob store collaborators: Cloudinary and a local folder store."""
import hashlib
import logging
import mimetypes
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import httpx

from mtm_listings.config import DATA_DIR, config
from mtm_listings.errors import BlobStoreError

logger = logging.getLogger(__name__)


@dataclass
class StoredBlob:
    """What the blob store hands back for one stored image."""

    url: str
    byte_size: int
    external_ref: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class BlobStore(Protocol):
    async def store(self, data: bytes, mime_type: str, folder: str) -> StoredBlob: ...

    async def delete(self, external_ref: str) -> bool: ...


def sign_params(params: dict[str, str], api_secret: str) -> str:
    """Cloudinary signature: sha1 of sorted k=v pairs joined by & plus the secret."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode()).hexdigest()


class CloudinaryBlobStore:
    """Signed uploads and deletes against the Cloudinary REST API."""

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.cloud_name = cloud_name or config.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or config.CLOUDINARY_API_KEY
        self.api_secret = api_secret or config.CLOUDINARY_API_SECRET
        if not self.cloud_name or not self.api_key or not self.api_secret:
            raise ValueError("Cloudinary configuration missing")
        self.client = client or httpx.AsyncClient(timeout=config.UPLOAD_TIMEOUT)
        self.base_url = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image"

    async def aclose(self) -> None:
        await self.client.aclose()

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {**params, "api_key": self.api_key, "signature": sign_params(params, self.api_secret)}

    async def store(self, data: bytes, mime_type: str, folder: str) -> StoredBlob:
        """Upload one image and return its secure URL."""
        form = self._signed({"folder": folder})
        extension = mimetypes.guess_extension(mime_type) or ""
        files = {"file": (f"upload{extension}", data, mime_type)}
        try:
            response = await self.client.post(f"{self.base_url}/upload", data=form, files=files)
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Cloudinary upload failed: {e}") from e
        if response.status_code != 200:
            raise BlobStoreError(
                f"Cloudinary upload returned {response.status_code}: {response.text[:200]}"
            )
        try:
            result = response.json()
        except ValueError as e:
            raise BlobStoreError(f"Cloudinary upload response is not JSON: {e}") from e
        if not isinstance(result, dict) or "secure_url" not in result:
            raise BlobStoreError("Cloudinary upload response has no secure_url")
        return StoredBlob(
            url=result["secure_url"],
            byte_size=result.get("bytes") or len(data),
            external_ref=result.get("public_id"),
            width=result.get("width"),
            height=result.get("height"),
        )

    async def delete(self, external_ref: str) -> bool:
        """Destroy an uploaded image. Returns False instead of raising."""
        form = self._signed({"public_id": external_ref})
        try:
            response = await self.client.post(f"{self.base_url}/destroy", data=form)
        except httpx.HTTPError as e:
            logger.warning(f"Cloudinary delete of {external_ref} failed: {e}")
            return False
        try:
            body = response.json() if response.status_code == 200 else None
        except ValueError:
            body = None
        deleted = isinstance(body, dict) and body.get("result") == "ok"
        if not deleted:
            logger.warning(f"Cloudinary delete of {external_ref} returned {response.status_code}")
            return False
        return True


class FolderBlobStore:
    """Local folder store returning file:// URLs (development).

    Each upload gets its own file, even for identical bytes.
    """

    def __init__(self, root: Path = DATA_DIR / "blobs"):
        self.root = Path(root)

    async def store(self, data: bytes, mime_type: str, folder: str) -> StoredBlob:
        digest = hashlib.sha256(data).hexdigest()
        extension = mimetypes.guess_extension(mime_type) or ".bin"
        target_dir = self.root / folder
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            path = target_dir / f"{digest[:16]}-{uuid.uuid4().hex[:12]}{extension}"
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise BlobStoreError(f"Could not write blob: {e}") from e
        return StoredBlob(
            url=path.resolve().as_uri(),
            byte_size=len(data),
            external_ref=f"{folder}/{path.name}",
        )

    async def delete(self, external_ref: str) -> bool:
        path = self.root / external_ref
        try:
            path.unlink()
        except OSError as e:
            logger.warning(f"Could not delete blob {external_ref}: {e}")
            return False
        return True
