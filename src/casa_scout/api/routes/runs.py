"""Run trigger API endpoints."""

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query

from casa_scout.api.dependencies import (
    ConfigDep,
    CrawlTrackerDep,
    EnrichmentTrackerDep,
    RunGuardDep,
)
from casa_scout.api.schemas import RunListResponse, RunTriggerResponse
from casa_scout.config import ScoutConfig, merge_crawl_overrides
from casa_scout.database.engine import get_session_factory
from casa_scout.errors import FatalError
from casa_scout.models.pydantic_models import RunKind
from casa_scout.scheduler import RunGuard
from casa_scout.services.crawl_service import CrawlService
from casa_scout.services.enrichment_service import EnrichmentService

logger = logging.getLogger(__name__)

router = APIRouter()


def _acquire_or_409(guard: RunGuard, kind: RunKind) -> None:
    if not guard.try_acquire(kind.value):
        raise HTTPException(
            status_code=409,
            detail=f"A {guard.current or 'run'} run is already in progress",
        )


@router.post("/crawl", status_code=202, response_model=RunTriggerResponse)
async def trigger_crawl(
    config: ConfigDep,
    guard: RunGuardDep,
    background_tasks: BackgroundTasks,
    max_searches: int | None = Query(None, ge=1, description="Override the search budget"),
    pages: int | None = Query(None, ge=1, description="Override pages per search"),
) -> RunTriggerResponse:
    """Start a crawl run in the background.

    Returns 409 if a crawl or enrichment run is already in progress.
    """
    _acquire_or_409(guard, RunKind.CRAWL)
    background_tasks.add_task(
        run_crawl,
        guard=guard,
        config=config,
        overrides={"max_searches": max_searches, "pages_per_search": pages},
    )
    return RunTriggerResponse(kind=RunKind.CRAWL)


@router.post("/enrichment", status_code=202, response_model=RunTriggerResponse)
async def trigger_enrichment(
    config: ConfigDep,
    guard: RunGuardDep,
    background_tasks: BackgroundTasks,
    limit: int | None = Query(None, ge=1, description="Maximum listings to enrich"),
    force: bool = Query(False, description="Run even if throttled"),
) -> RunTriggerResponse:
    """Start an enrichment cycle in the background.

    Returns 409 if a crawl or enrichment run is already in progress.
    """
    _acquire_or_409(guard, RunKind.ENRICHMENT)
    background_tasks.add_task(run_enrichment, guard=guard, config=config, limit=limit, force=force)
    return RunTriggerResponse(kind=RunKind.ENRICHMENT)


@router.get("", response_model=RunListResponse)
async def list_runs(
    crawl_tracker: CrawlTrackerDep,
    enrichment_tracker: EnrichmentTrackerDep,
    kind: RunKind | None = Query(None, description="Only runs of this kind"),
    limit: int = Query(20, ge=1, le=100, description="Maximum runs to return"),
) -> RunListResponse:
    """List recent run summaries, newest first."""
    runs = []
    if kind in (None, RunKind.CRAWL):
        runs.extend(crawl_tracker.load().runs)
    if kind in (None, RunKind.ENRICHMENT):
        runs.extend(enrichment_tracker.load().runs)

    runs.sort(key=lambda run: run.started_at, reverse=True)
    runs = runs[:limit]
    return RunListResponse(runs=runs, count=len(runs))


async def run_crawl(guard: RunGuard, config: ScoutConfig, overrides: dict[str, int | None]) -> None:
    """Background task to execute a crawl run.

    The guard was acquired by the request handler and is released here.

    Args:
        guard: Run guard held for this run.
        config: Application configuration.
        overrides: Crawl setting overrides from the request.
    """
    session = get_session_factory()()
    try:
        settings = merge_crawl_overrides(config.crawl, overrides)
        await CrawlService(session, config).run_daily_update(settings=settings)
    except FatalError as e:
        logger.error("Background crawl failed: %s", e)
    finally:
        session.close()
        guard.release()


async def run_enrichment(
    guard: RunGuard, config: ScoutConfig, limit: int | None, force: bool
) -> None:
    """Background task to execute an enrichment cycle.

    Args:
        guard: Run guard held for this run.
        config: Application configuration.
        limit: Maximum listings to enrich.
        force: Run even if throttled.
    """
    session = get_session_factory()()
    try:
        await EnrichmentService(session, config).run_cycle(force=force, limit=limit)
    except FatalError as e:
        logger.error("Background enrichment failed: %s", e)
    finally:
        session.close()
        guard.release()
