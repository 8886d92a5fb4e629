"""Data models for images, AI analyses, drafts and listings."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ListingStatus(str, Enum):
    """Listing lifecycle. DRAFT is never persisted."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    EXPORTED = "exported"


class Role(str, Enum):
    VENDOR = "vendor"
    ADMIN = "admin"


class CamelModel(BaseModel):
    """Base model serialized with the client's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ListingImage(CamelModel):
    """One uploaded photograph."""

    id: str
    name: str
    mime_type: str
    byte_size: int = 0
    url: str
    external_ref: Optional[str] = Field(default=None, description="Blob store handle for deletion")
    pixel_width: Optional[int] = None
    pixel_height: Optional[int] = None
    sequence: int = Field(default=0, description="Submission index within the upload batch")
    uploaded_at: datetime = Field(default_factory=utc_now)

    @property
    def is_inline(self) -> bool:
        return self.url.startswith("data:")


def _coerce_int(value: Any, low: int, high: int) -> Optional[int]:
    """Coerce extractor output to an int in [low, high], or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or value != value:
        return None
    return max(low, min(high, int(round(value))))


def _coerce_lines(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.splitlines()
    if not isinstance(value, (list, tuple)):
        return []
    items = []
    for item in value:
        if item is None:
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


class AIAnalysis(CamelModel):
    """A single extraction snapshot. Every field may be absent."""

    title: Optional[str] = None
    brand: Optional[str] = None
    line: Optional[str] = None
    scale: Optional[str] = None
    gauge: Optional[str] = None
    locomotive_type: Optional[str] = None
    road_name: Optional[str] = None
    road_number: Optional[str] = None
    model_number: Optional[str] = None
    dcc: Optional[str] = None
    decoder_brand: Optional[str] = None
    condition: Optional[int] = None
    condition_notes: Optional[str] = None
    running_condition: Optional[str] = None
    lighting: Optional[str] = None
    packaging: Optional[str] = None
    paperwork: Optional[bool] = None
    wheel_wear: Optional[str] = None
    material: Optional[str] = None
    paint: Optional[str] = None
    coupler_type: Optional[str] = None
    features: list[str] = Field(default_factory=list)
    defects: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    estimated_value: Optional[str] = None
    confidence: Optional[int] = None

    @field_validator(
        "title", "brand", "line", "scale", "gauge", "locomotive_type", "road_name",
        "road_number", "model_number", "dcc", "decoder_brand", "condition_notes",
        "running_condition", "lighting", "packaging", "wheel_wear", "material",
        "paint", "coupler_type", "description", "estimated_value",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(value)
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    @field_validator("condition", mode="before")
    @classmethod
    def _condition_grade(cls, value: Any) -> Optional[int]:
        return _coerce_int(value, 1, 10)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_pct(cls, value: Any) -> Optional[int]:
        return _coerce_int(value, 0, 100)

    @field_validator("paperwork", mode="before")
    @classmethod
    def _paperwork_flag(cls, value: Any) -> Optional[bool]:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "included", "y"):
                return True
            if lowered in ("false", "no", "not included", "n"):
                return False
        return None

    @field_validator("features", "defects", mode="before")
    @classmethod
    def _list_fields(cls, value: Any) -> list[str]:
        return _coerce_lines(value)


class ListingFields(CamelModel):
    """User-editable listing vocabulary shared by drafts and stored listings."""

    sku: str = ""
    title: str = ""
    condition: Optional[int] = Field(default=None, ge=1, le=10)
    brand: str = ""
    line: str = ""
    scale: str = ""
    gauge: str = ""
    locomotive_type: str = ""
    road_name: str = ""
    road_number: str = ""
    model_number: str = ""
    phase: str = ""
    dcc: str = ""
    dcc_status: str = ""
    decoder_brand: str = ""
    coupler_type: str = ""
    lighting: str = ""
    material: str = ""
    paint: str = ""
    packaging: str = ""
    paperwork: str = ""
    wheel_wear: str = ""
    running_condition: str = ""
    condition_notes: str = ""
    length: str = ""
    width: str = ""
    height: str = ""
    weight: str = ""
    description: str = ""
    estimated_value: str = ""
    vendor: str = ""
    features: list[str] = Field(default_factory=list)
    defects: list[str] = Field(default_factory=list)
    confidence: Optional[int] = Field(default=None, ge=0, le=100)


EDITABLE_FIELDS: tuple[str, ...] = tuple(
    name for name in ListingFields.model_fields if name != "sku"
)


class ListingDraft(ListingFields):
    """In-progress listing under edit in the Review step."""

    listing_id: Optional[str] = Field(default=None, description="Set when editing a stored listing")

    def editable_values(self) -> dict[str, Any]:
        return self.model_dump(include=set(EDITABLE_FIELDS))


class Listing(ListingFields):
    """The durable unit of work."""

    id: str
    status: ListingStatus = ListingStatus.PENDING
    images: list[ListingImage] = Field(default_factory=list)
    ai_analysis: Optional[AIAnalysis] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    processed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    exported_at: Optional[datetime] = None

    def to_draft(self) -> ListingDraft:
        data = self.model_dump(include=set(ListingFields.model_fields))
        return ListingDraft(listing_id=self.id, **data)
