"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
STATE_DB = DATA_DIR / "state.db"
EXPORT_DIR = DATA_DIR / "exports"


class Config:
    """Application configuration."""

    # Extraction (Gemini)
    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    GEMINI_BASE_URL: str = os.getenv(
        "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
    )
    EXTRACT_MAX_IMAGES: int = int(os.getenv("EXTRACT_MAX_IMAGES", "5"))
    EXTRACT_MAX_ATTEMPTS: int = int(os.getenv("EXTRACT_MAX_ATTEMPTS", "3"))
    EXTRACT_BACKOFF: float = float(os.getenv("EXTRACT_BACKOFF", "1.0"))
    EXTRACT_TIMEOUT: int = int(os.getenv("EXTRACT_TIMEOUT", "30"))

    # Blob store (Cloudinary)
    CLOUDINARY_CLOUD_NAME: str | None = os.getenv("CLOUDINARY_CLOUD_NAME")
    CLOUDINARY_API_KEY: str | None = os.getenv("CLOUDINARY_API_KEY")
    CLOUDINARY_API_SECRET: str | None = os.getenv("CLOUDINARY_API_SECRET")
    CLOUDINARY_FOLDER: str = os.getenv("CLOUDINARY_FOLDER", "mtm-listings")
    UPLOAD_TIMEOUT: int = int(os.getenv("UPLOAD_TIMEOUT", "60"))
    # Local folder store, used when Cloudinary is not configured
    BLOB_DIR: str | None = os.getenv("BLOB_DIR")

    # Ingest
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "50"))

    # Listings
    SKU_PREFIX: str = os.getenv("SKU_PREFIX", "MTM")
    DEFAULT_VENDOR: str | None = os.getenv("DEFAULT_VENDOR")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls, require_extractor: bool = True, require_blob_store: bool = False) -> None:
        """Validate required configuration."""
        errors = []
        if require_extractor and not cls.GEMINI_API_KEY:
            errors.append("GEMINI_API_KEY is required")
        if require_blob_store:
            if not cls.CLOUDINARY_CLOUD_NAME:
                errors.append("CLOUDINARY_CLOUD_NAME is required")
            if not cls.CLOUDINARY_API_KEY or not cls.CLOUDINARY_API_SECRET:
                errors.append("CLOUDINARY_API_KEY/CLOUDINARY_API_SECRET are required")
        if cls.EXTRACT_MAX_ATTEMPTS < 1:
            errors.append("EXTRACT_MAX_ATTEMPTS must be at least 1")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
