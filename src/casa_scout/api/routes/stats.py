"""Statistics API endpoints."""

from fastapi import APIRouter, Query

from casa_scout.api.dependencies import CrawlTrackerDep, DbSession, EnrichmentTrackerDep
from casa_scout.api.schemas import (
    AmenitiesResponse,
    EnrichmentStatsResponse,
    RunStateSummary,
    StatsResponse,
)
from casa_scout.database.repository import ListingRepository
from casa_scout.models.pydantic_models import Source

router = APIRouter()


@router.get("", response_model=StatsResponse)
async def get_stats(
    session: DbSession,
    tracker: CrawlTrackerDep,
    source: Source | None = Query(None, description="Restrict to one source"),
) -> StatsResponse:
    """Get aggregated statistics about listings.

    Reflects every committed upsert, including those of a run that failed
    part way through.
    """
    repo = ListingRepository(session)
    return StatsResponse(
        statistics=repo.get_statistics(source=source),
        crawl_state=RunStateSummary.from_state(tracker.load()),
    )


@router.get("/enrichment", response_model=EnrichmentStatsResponse)
async def get_enrichment_stats(
    session: DbSession,
    tracker: EnrichmentTrackerDep,
) -> EnrichmentStatsResponse:
    """Get enrichment coverage and lifetime enrichment counters."""
    repo = ListingRepository(session)
    return EnrichmentStatsResponse(
        stats=repo.get_enrichment_stats(),
        enrichment_state=RunStateSummary.from_state(tracker.load()),
    )


@router.get("/amenities", response_model=AmenitiesResponse)
async def get_top_amenities(
    session: DbSession,
    limit: int = Query(20, ge=1, le=100, description="Maximum amenities to return"),
) -> AmenitiesResponse:
    """Get the most frequent amenities across enriched listings."""
    amenities = ListingRepository(session).get_top_amenities(limit=limit)
    return AmenitiesResponse(amenities=amenities, count=len(amenities))
