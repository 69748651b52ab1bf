"""JSON export of enriched listings."""

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

from casa_scout.models.db_models import Listing
from casa_scout.models.pydantic_models import ListingRead


def listing_to_dict(listing: Listing) -> dict[str, Any]:
    """Serialize a listing the same way the API reads it."""
    data: dict[str, Any] = ListingRead.model_validate(listing).model_dump(mode="json")
    return data


def export_to_json(
    listings: list[Listing],
    output: Path | TextIO | None = None,
    indent: int = 2,
) -> str:
    """Export listings to a JSON document.

    The document carries the export time, the listing count and a
    per-source breakdown next to the listings themselves.

    Args:
        listings: Listing ORM objects.
        output: File path or file-like object. If None, the JSON is returned.
        indent: JSON indentation level.

    Returns:
        The JSON string if output is None, empty string otherwise.
    """
    items = [listing_to_dict(listing) for listing in listings]
    document = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "count": len(items),
        "by_source": dict(Counter(item["source"] for item in items)),
        "listings": items,
    }
    text = json.dumps(document, indent=indent, ensure_ascii=False)

    if output is None:
        return text
    if isinstance(output, Path):
        output.write_text(text, encoding="utf-8")
    else:
        output.write(text)
    return ""
