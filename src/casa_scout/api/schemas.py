"""API response schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from casa_scout.models.pydantic_models import (
    AmenityCount,
    EnrichmentStats,
    HealthReport,
    ListingStatistics,
    RunKind,
    RunState,
    RunSummary,
)


class RunStateSummary(BaseModel):
    """Lifetime counters of one kind of run."""

    last_run: datetime | None
    last_attempt: datetime | None
    total_scraped: int
    total_new: int
    total_updated: int
    total_errors: int
    success_rate: int = Field(description="Percentage of processed items that succeeded")
    runs_recorded: int

    @classmethod
    def from_state(cls, state: RunState) -> "RunStateSummary":
        return cls(
            last_run=state.last_run,
            last_attempt=state.last_attempt,
            total_scraped=state.total_scraped,
            total_new=state.total_new,
            total_updated=state.total_updated,
            total_errors=state.total_errors,
            success_rate=state.success_rate,
            runs_recorded=len(state.runs),
        )


class StatsResponse(BaseModel):
    """Listing statistics and crawl state."""

    statistics: ListingStatistics
    crawl_state: RunStateSummary


class EnrichmentStatsResponse(BaseModel):
    """Enrichment coverage and enrichment state."""

    stats: EnrichmentStats
    enrichment_state: RunStateSummary


class AmenitiesResponse(BaseModel):
    """Top amenities report."""

    amenities: list[AmenityCount]
    count: int


class RunTriggerResponse(BaseModel):
    """Acknowledgement of a run started in the background."""

    kind: RunKind
    status: str = "started"


class RunListResponse(BaseModel):
    """Recent run summaries, newest first."""

    runs: list[RunSummary]
    count: int


class HealthResponse(BaseModel):
    """Service health."""

    status: str = Field(description="'healthy', or 'degraded' when enrichment is stuck")
    runner_state: str
    enrichment: HealthReport
