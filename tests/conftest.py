"""Shared fakes and fixtures."""
import httpx
import orjson
import pytest

from mtm_listings.errors import BlobStoreError
from mtm_listings.extract.retry import RetryPolicy
from mtm_listings.ingest.blob_store import StoredBlob
from mtm_listings.store.storage import MemoryStorage

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-body"

KATO_ANALYSIS = {
    "title": "Kato N Scale EMD SD40-2 Diesel",
    "brand": "Kato",
    "scale": "1:160",
    "gauge": "N",
    "locomotiveType": "Diesel",
    "roadName": None,
    "roadNumber": "BN1574",
    "dcc": "DCC Ready",
    "packaging": "Original box",
    "condition": 8,
    "confidence": 85,
    "features": ["Flywheel drive", "Directional lighting"],
    "defects": [],
}


class FakeBlobStore:
    """Records uploads and deletes; can be told to fail either."""

    def __init__(self, fail=False, delete_ok=True):
        self.fail = fail
        self.delete_ok = delete_ok
        self.stored = []
        self.deleted = []

    async def store(self, data, mime_type, folder):
        if self.fail:
            raise BlobStoreError("upload refused")
        self.stored.append(data)
        number = len(self.stored)
        return StoredBlob(
            url=f"https://cdn.example.test/{folder}/{number}.jpg",
            byte_size=len(data),
            external_ref=f"{folder}/{number}",
            width=800,
            height=600,
        )

    async def delete(self, external_ref):
        self.deleted.append(external_ref)
        return self.delete_ok


class FakeExtractor:
    """Replays canned responses; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses) or [orjson.dumps(KATO_ANALYSIS).decode()]
        self.calls = []

    async def generate(self, prompt, images):
        self.calls.append(list(images))
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    """Three attempts, 1s then 2s, without actually sleeping."""

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RetryPolicy(max_attempts=3, initial_delay=1.0, multiplier=2.0, sleep=fake_sleep)


@pytest.fixture
def image_client():
    """HTTP client that serves a JPEG for any URL except ones containing 'missing'."""

    def handler(request):
        if "missing" in request.url.path:
            return httpx.Response(404)
        return httpx.Response(200, content=JPEG_BYTES, headers={"content-type": "image/jpeg"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def make_extractor():
    return FakeExtractor


@pytest.fixture
def jpeg_bytes():
    return JPEG_BYTES
