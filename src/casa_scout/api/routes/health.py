"""Health check endpoint."""

from fastapi import APIRouter

from casa_scout.api.dependencies import ConfigDep, DbSession, EnrichmentTrackerDep, RunGuardDep
from casa_scout.api.schemas import HealthResponse
from casa_scout.database.repository import ListingRepository
from casa_scout.services.health import check_health

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    session: DbSession,
    config: ConfigDep,
    tracker: EnrichmentTrackerDep,
    guard: RunGuardDep,
) -> HealthResponse:
    """Health check endpoint.

    Reports 'degraded' when listings are waiting for details and no
    enrichment run has completed recently.
    """
    report = check_health(
        tracker.load(),
        pending=ListingRepository(session).count_pending_enrichment(),
        stale_after_hours=config.health.stale_after_hours,
    )
    return HealthResponse(
        status="degraded" if report.stuck else "healthy",
        runner_state=guard.state.value,
        enrichment=report,
    )
