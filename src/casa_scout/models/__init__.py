"""Data models for casa-scout."""

from casa_scout.models.pydantic_models import (
    BatchUpsertResult,
    CrawlResult,
    EnrichmentResult,
    ListingCreate,
    ListingDetail,
    ListingRead,
    RunState,
    RunSummary,
    ScrapedListing,
    SearchDescriptor,
    Source,
)

__all__ = [
    "BatchUpsertResult",
    "CrawlResult",
    "EnrichmentResult",
    "ListingCreate",
    "ListingDetail",
    "ListingRead",
    "RunState",
    "RunSummary",
    "ScrapedListing",
    "SearchDescriptor",
    "Source",
]
