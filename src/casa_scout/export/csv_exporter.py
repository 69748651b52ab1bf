"""CSV export functionality for listings."""

import csv
from io import StringIO
from pathlib import Path
from typing import TextIO

from casa_scout.models.db_models import Listing

EXPORT_COLUMNS = [
    "id",
    "external_id",
    "source",
    "title",
    "property_type",
    "price",
    "currency",
    "bedrooms",
    "bathrooms",
    "area_sqm",
    "city",
    "state",
    "neighborhood",
    "full_address",
    "parking_spaces",
    "property_age",
    "amenities",
    "image_count",
    "seller_type",
    "detail_scraped",
    "link",
    "first_seen_at",
    "last_seen_at",
]


def _text(value: object) -> str:
    return "" if value is None else str(value)


def listing_to_row(listing: Listing) -> dict[str, str]:
    """Convert a Listing to a CSV row dictionary.

    Amenities are joined with "; " so the row stays one line.

    Args:
        listing: Listing ORM object.

    Returns:
        Dictionary with column names as keys.
    """
    source = listing.source
    return {
        "id": str(listing.id),
        "external_id": listing.external_id,
        "source": source.value if hasattr(source, "value") else _text(source),
        "title": listing.title or "",
        "property_type": listing.property_type or "",
        "price": _text(listing.price),
        "currency": listing.currency or "",
        "bedrooms": _text(listing.bedrooms),
        "bathrooms": _text(listing.bathrooms),
        "area_sqm": _text(listing.area_sqm),
        "city": listing.city or "",
        "state": listing.state or "",
        "neighborhood": listing.neighborhood or "",
        "full_address": listing.full_address or "",
        "parking_spaces": _text(listing.parking_spaces),
        "property_age": _text(listing.property_age),
        "amenities": "; ".join(listing.amenities or []),
        "image_count": str(len(listing.images or [])),
        "seller_type": listing.seller_type or "",
        "detail_scraped": "yes" if listing.detail_scraped else "no",
        "link": listing.link or "",
        "first_seen_at": listing.first_seen_at.isoformat() if listing.first_seen_at else "",
        "last_seen_at": listing.last_seen_at.isoformat() if listing.last_seen_at else "",
    }


def export_to_csv(
    listings: list[Listing],
    output: Path | TextIO | None = None,
) -> str:
    """Export listings to CSV format.

    Args:
        listings: List of Listing ORM objects.
        output: Optional file path or file-like object. If None, returns string.

    Returns:
        CSV string if output is None, empty string otherwise.
    """
    rows = [listing_to_row(listing) for listing in listings]

    if output is None:
        buffer = StringIO()
        _write_rows(buffer, rows)
        return buffer.getvalue()

    if isinstance(output, Path):
        with open(output, "w", newline="", encoding="utf-8") as f:
            _write_rows(f, rows)
        return ""

    _write_rows(output, rows)
    return ""


def _write_rows(stream: TextIO, rows: list[dict[str, str]]) -> None:
    writer = csv.DictWriter(stream, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
