"""SixBit CSV and XML serializers."""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, Optional
from xml.sax.saxutils import escape

from mtm_listings.models import Listing

MAX_EXPORT_IMAGES = 5

CSV_HEADERS = [
    "ItemNumber",
    "Title",
    "ConditionCode",
    "Brand",
    "Scale",
    "Gauge",
    "DCC",
    "Weight",
    "Status",
    "Vendor",
    "Description",
    "RoadName",
    "RoadNumber",
    "LocomotiveType",
] + [f"ImageURL{i}" for i in range(1, MAX_EXPORT_IMAGES + 1)]

FORMATS = ("csv", "xml")

XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


@dataclass
class ExportRow:
    """One listing flattened to the SixBit vocabulary."""

    sku: str
    title: str
    condition_code: str
    brand: str
    scale: str
    dcc: str
    weight: str
    status: str
    vendor: str
    description: str
    road_name: str
    road_number: str
    locomotive_type: str
    image_urls: list[str] = field(default_factory=list)


def condition_code(condition: Optional[int]) -> str:
    """8 -> "C8"; no grade -> ""."""
    if condition is None or isinstance(condition, bool):
        return ""
    return f"C{condition}"


def export_row(listing: Listing) -> ExportRow:
    """Flatten a listing, falling back to its analysis snapshot for empty fields."""
    ai = listing.ai_analysis

    def pick(name: str) -> str:
        value = getattr(listing, name)
        if not value and ai is not None:
            value = getattr(ai, name) or ""
        return value or ""

    condition = listing.condition
    if condition is None and ai is not None:
        condition = ai.condition

    urls = [image.url for image in listing.images[:MAX_EXPORT_IMAGES]]

    return ExportRow(
        sku=listing.sku,
        title=pick("title"),
        condition_code=condition_code(condition),
        brand=pick("brand"),
        scale=pick("scale"),
        dcc=pick("dcc"),
        weight=listing.weight,
        status=listing.status.value,
        vendor=listing.vendor,
        description=pick("description"),
        road_name=pick("road_name"),
        road_number=pick("road_number"),
        locomotive_type=pick("locomotive_type"),
        image_urls=urls,
    )


def csv_quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def to_csv(listings: Iterable[Listing]) -> str:
    """SixBit CSV. Title and Description are quoted; image columns padded to five."""
    lines = [",".join(CSV_HEADERS)]
    for listing in listings:
        row = export_row(listing)
        images = row.image_urls + [""] * (MAX_EXPORT_IMAGES - len(row.image_urls))
        cells = [
            row.sku,
            csv_quote(row.title),
            row.condition_code,
            row.brand,
            row.scale,
            row.scale,  # Gauge mirrors Scale
            row.dcc,
            row.weight,
            row.status,
            row.vendor,
            csv_quote(row.description),
            row.road_name,
            row.road_number,
            row.locomotive_type,
            *images,
        ]
        lines.append(",".join(cells))
    return "\n".join(lines)


def cdata(value: str) -> str:
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def xml_text(value: str) -> str:
    return escape(value, XML_ENTITIES)


def iso_instant(moment: datetime) -> str:
    """2026-10-19T18:50:00.123Z"""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _xml_item(row: ExportRow) -> str:
    lines = [
        "    <Item>",
        f"      <ItemNumber>{xml_text(row.sku)}</ItemNumber>",
        f"      <Title>{cdata(row.title)}</Title>",
        f"      <ConditionCode>{xml_text(row.condition_code)}</ConditionCode>",
        f"      <Brand>{xml_text(row.brand)}</Brand>",
        f"      <Scale>{xml_text(row.scale)}</Scale>",
        f"      <Gauge>{xml_text(row.scale)}</Gauge>",
        f"      <DCC>{xml_text(row.dcc)}</DCC>",
        f"      <Weight>{xml_text(row.weight)}</Weight>",
        f"      <Status>{xml_text(row.status)}</Status>",
    ]
    if row.vendor:
        lines.append(f"      <Vendor>{xml_text(row.vendor)}</Vendor>")
    lines += [
        f"      <Description>{cdata(row.description)}</Description>",
        f"      <RoadName>{xml_text(row.road_name)}</RoadName>",
        f"      <RoadNumber>{xml_text(row.road_number)}</RoadNumber>",
        f"      <LocomotiveType>{xml_text(row.locomotive_type)}</LocomotiveType>",
    ]
    for i, url in enumerate(row.image_urls, start=1):
        lines.append(f"      <ImageURL{i}>{xml_text(url)}</ImageURL{i}>")
    lines.append("    </Item>")
    return "\n".join(lines)


def to_xml(listings: Iterable[Listing], exported_at: Optional[datetime] = None) -> str:
    """SixBit XML. Image tags are emitted only for images that exist."""
    rows = [export_row(listing) for listing in listings]
    exported_at = exported_at or datetime.now(timezone.utc)
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<SixBitExport>",
        f"  <ExportDate>{iso_instant(exported_at)}</ExportDate>",
        f"  <TotalItems>{len(rows)}</TotalItems>",
        "  <Items>",
    ]
    parts += [_xml_item(row) for row in rows]
    parts += ["  </Items>", "</SixBitExport>"]
    return "\n".join(parts)


def export_filename(fmt: str, today: Optional[date] = None) -> str:
    if fmt not in FORMATS:
        raise ValueError(f"Unknown export format: {fmt}")
    today = today or datetime.now(timezone.utc).date()
    return f"sixbit-export-{today.isoformat()}.{fmt}"


def render(listings: Iterable[Listing], fmt: str, exported_at: Optional[datetime] = None) -> str:
    if fmt == "csv":
        return to_csv(listings)
    if fmt == "xml":
        return to_xml(listings, exported_at)
    raise ValueError(f"Unknown export format: {fmt}")
