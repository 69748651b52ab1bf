"""Pydantic models for data validation."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Source(str, Enum):
    """Supported listing sources."""

    MERCADOLIBRE = "mercadolibre"
    LAMUDI = "lamudi"


class RunKind(str, Enum):
    """Kind of tracked run."""

    CRAWL = "crawl"
    ENRICHMENT = "enrichment"


class RunStatus(str, Enum):
    """Outcome of a tracked run."""

    COMPLETED = "completed"
    FAILED = "failed"


class RateLimitPolicy(str, Enum):
    """What the crawl driver does with a page that hit the rate limit."""

    SKIP = "skip"
    RETRY = "retry"


class SearchDescriptor(BaseModel):
    """One parameterized search query against a source site."""

    facets: dict[str, str | int] = Field(default_factory=dict)
    query_template: str = Field(..., description="Path relative to the source base URL")
    description: str = ""

    model_config = ConfigDict(frozen=True)


class ScrapedListing(BaseModel):
    """Raw listing extracted from a search results page."""

    source: Source
    external_id: str = Field(..., min_length=1, description="Site-derived stable listing ID")
    title: str
    price: Decimal | None = Field(None, ge=0)
    currency: str = "MXN"
    location: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    bedrooms: int = Field(0, ge=0)
    bathrooms: int = Field(0, ge=0)
    area_sqm: Decimal | None = Field(None, ge=0)
    property_type: str = "Otro"
    link: str | None = None
    image_url: str | None = None
    scraped_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class ListingCreate(BaseModel):
    """Core discovery fields required to upsert a listing."""

    source: Source
    external_id: str
    title: str
    price: Decimal | None = None
    currency: str = "MXN"
    location: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    bedrooms: int = Field(0, ge=0)
    bathrooms: int = Field(0, ge=0)
    area_sqm: Decimal | None = None
    property_type: str = "Otro"
    link: str | None = None
    image_url: str | None = None

    @classmethod
    def from_scraped(cls, listing: ScrapedListing) -> "ListingCreate":
        """Build persistence input from an extracted listing."""
        return cls(**listing.model_dump(exclude={"scraped_at"}))


class ListingDetail(BaseModel):
    """Detail-page attributes used to enrich a persisted listing."""

    description: str | None = None
    full_address: str | None = None
    neighborhood: str | None = None
    total_area_sqm: Decimal | None = None
    built_area_sqm: Decimal | None = None
    parking_spaces: int | None = Field(None, ge=0)
    property_age: int | None = Field(None, ge=0)
    amenities: list[str] = Field(default_factory=list)
    features: dict[str, str] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    technical_specs: dict[str, str] = Field(default_factory=dict)
    floor_plan_url: str | None = None
    seller_type: str | None = None
    publish_date: datetime | None = None
    views: int | None = Field(None, ge=0)


class ListingRead(ListingCreate):
    """Listing data as read from the database."""

    id: int
    first_seen_at: datetime
    last_seen_at: datetime
    updated_at: datetime
    detail_scraped: bool = False
    last_scraped_at: datetime | None = None
    description: str | None = None
    full_address: str | None = None
    neighborhood: str | None = None
    total_area_sqm: Decimal | None = None
    built_area_sqm: Decimal | None = None
    parking_spaces: int | None = None
    property_age: int | None = None
    amenities: list[str] = Field(default_factory=list)
    features: dict[str, str] = Field(default_factory=dict)
    images: list[str] = Field(default_factory=list)
    technical_specs: dict[str, str] = Field(default_factory=dict)
    floor_plan_url: str | None = None
    seller_type: str | None = None
    publish_date: datetime | None = None
    views: int | None = None

    model_config = ConfigDict(from_attributes=True)


class PageResult(BaseModel):
    """Listings extracted from one search results page."""

    listings: list[ScrapedListing] = Field(default_factory=list)
    has_next_page: bool = False


class UpsertError(BaseModel):
    """One failed record in a batch upsert."""

    id: str = Field(..., description="External ID of the failed record")
    message: str


class BatchUpsertResult(BaseModel):
    """Outcome of upserting a batch of listings."""

    inserted: int = 0
    updated: int = 0
    errors: list[UpsertError] = Field(default_factory=list)

    def merge(self, other: "BatchUpsertResult") -> "BatchUpsertResult":
        """Return a new result combining this one with another batch."""
        return BatchUpsertResult(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            errors=[*self.errors, *other.errors],
        )


class CrawlProgress(BaseModel):
    """Progress update emitted by the crawl driver."""

    descriptor_index: int = Field(..., description="1-based index of the current descriptor")
    total_descriptors: int
    description: str
    unique_listings: int = Field(0, description="Unique listings accumulated this run")


class CrawlResult(BaseModel):
    """Final result of a crawl run."""

    descriptors_run: int = 0
    pages_fetched: int = 0
    pages_failed: int = 0
    pages_rate_limited: int = 0
    listings_found: int = Field(0, description="Raw listings returned by all pages")
    unique_listings: int = Field(0, description="Listings surviving session dedup")
    duplicates_skipped: int = 0
    inserted: int = 0
    updated: int = 0
    errors: list[UpsertError] = Field(default_factory=list)


class EnrichmentItem(BaseModel):
    """Outcome of enriching a single listing."""

    id: int
    external_id: str
    success: bool
    error: str | None = None


class EnrichmentResult(BaseModel):
    """Outcome of processing enrichment candidates."""

    processed: int = 0
    success: int = 0
    errors: int = 0
    items: list[EnrichmentItem] = Field(default_factory=list)


class EnrichmentStats(BaseModel):
    """Aggregate enrichment coverage."""

    total_properties: int = 0
    with_details: int = 0
    without_details: int = 0
    with_images: int = 0
    with_amenities: int = 0
    avg_views: float | None = None
    avg_parking: float | None = None


class AmenityCount(BaseModel):
    """Frequency of one amenity across enriched listings."""

    amenity: str
    count: int


class ListingStatistics(BaseModel):
    """Aggregate statistics over persisted listings."""

    total: int = 0
    unique_properties: int = 0
    states_covered: int = 0
    cities_covered: int = 0
    houses: int = 0
    apartments: int = 0
    avg_price: float | None = None
    oldest_listing: datetime | None = None
    newest_update: datetime | None = None
    recent_new: int = Field(0, description="Listings first seen in the last 24 hours")


class RunSummary(BaseModel):
    """Summary of one crawl or enrichment run."""

    kind: RunKind
    started_at: datetime
    finished_at: datetime
    duration_seconds: float = 0.0
    status: RunStatus = RunStatus.COMPLETED
    processed: int = 0
    success: int = 0
    errors: int = 0
    new_listings: int = 0
    updated_listings: int = 0
    searches_run: int = 0
    error_message: str | None = None


class RunState(BaseModel):
    """Durable counters and bounded run history."""

    last_run: datetime | None = Field(None, description="Start of the last completed run")
    last_attempt: datetime | None = Field(None, description="Start of the last run of any outcome")
    total_scraped: int = 0
    total_new: int = 0
    total_updated: int = 0
    total_success: int = 0
    total_errors: int = 0
    runs: list[RunSummary] = Field(default_factory=list)

    @property
    def success_rate(self) -> int:
        """Percentage of processed items that succeeded."""
        if self.total_scraped <= 0:
            return 0
        return round(self.total_success / self.total_scraped * 100)


class HealthReport(BaseModel):
    """Derived enrichment health signal."""

    needs_enrichment: bool
    pending: int = Field(0, description="Listings still missing details")
    last_run: datetime | None = None
    recently_run: bool
    stuck: bool
