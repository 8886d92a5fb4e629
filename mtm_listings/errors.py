"""Exception hierarchy for the listing engine."""
from typing import Iterable


class ListingEngineError(Exception):
    """Base class for every error raised by the engine."""


class FileRejected(ListingEngineError):
    """An uploaded file failed type or size validation."""

    def __init__(self, name: str, reason: str):
        super().__init__(reason)
        self.name = name
        self.reason = reason


class MissingRequiredFields(ListingEngineError):
    """Approve was attempted on a draft with empty required fields."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class NoImagesStaged(ListingEngineError):
    """Approve needs at least one staged image."""


class ExtractionError(ListingEngineError):
    """Transport-level failure talking to the extraction collaborator."""


class RetryableExtractionError(ExtractionError):
    """The collaborator reported overload or rate limiting."""


class FatalExtractionError(ExtractionError):
    """Non-retryable failure (auth, bad request, timeout, network)."""


class AnalysisInProgress(ListingEngineError):
    """An extraction call is already in flight for the current draft."""


class StorageError(ListingEngineError):
    """The persistence backend failed to read or write."""


class StoreNotReady(ListingEngineError):
    """The store was used before initialize() finished."""


class InvalidTransition(ListingEngineError):
    """A status change that the listing lifecycle does not allow."""


class ConfirmationRequired(ListingEngineError):
    """A destructive action was called without explicit confirmation."""


class BlobStoreError(ListingEngineError):
    """The external blob store rejected or failed an upload/delete."""
