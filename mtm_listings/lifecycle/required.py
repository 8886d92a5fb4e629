"""Required-field completeness check gating Approve."""
from mtm_listings.models import ListingDraft

# (field, label shown to the user)
REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("brand", "Brand"),
    ("scale", "Scale"),
    ("gauge", "Gauge"),
    ("road_name", "Road Name"),
    ("locomotive_type", "Locomotive Type"),
    ("dcc", "Control"),
    ("packaging", "Packaging"),
)


def missing_required_fields(draft: ListingDraft) -> list[str]:
    """Labels of required fields that are empty or whitespace."""
    missing = []
    for name, label in REQUIRED_FIELDS:
        value = getattr(draft, name)
        if value is None or not str(value).strip():
            missing.append(label)
    return missing
