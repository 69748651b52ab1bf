"""FastAPI dependency injection for database sessions, config and the run guard."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from casa_scout.config import ScoutConfig, load_config
from casa_scout.database.engine import get_session_factory
from casa_scout.scheduler import RunGuard
from casa_scout.services.run_state import (
    RunStateTracker,
    crawl_state_tracker,
    enrichment_state_tracker,
)


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session.

    Yields:
        Database session that is automatically closed after use.
    """
    session_factory = get_session_factory()
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# Singletons (created once on first use)
_config: ScoutConfig | None = None
_run_guard: RunGuard | None = None


def get_config() -> ScoutConfig:
    """Dependency that provides the application configuration.

    Returns:
        Loaded ScoutConfig.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_run_guard() -> RunGuard:
    """Dependency that provides the process-wide run guard.

    Returns:
        RunGuard shared by all run-triggering endpoints.
    """
    global _run_guard
    if _run_guard is None:
        _run_guard = RunGuard()
    return _run_guard


def get_crawl_tracker(config: Annotated[ScoutConfig, Depends(get_config)]) -> RunStateTracker:
    """Dependency that provides the crawl run-state tracker."""
    return crawl_state_tracker(config.state)


def get_enrichment_tracker(
    config: Annotated[ScoutConfig, Depends(get_config)],
) -> RunStateTracker:
    """Dependency that provides the enrichment run-state tracker."""
    return enrichment_state_tracker(config.state)


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db)]
ConfigDep = Annotated[ScoutConfig, Depends(get_config)]
RunGuardDep = Annotated[RunGuard, Depends(get_run_guard)]
CrawlTrackerDep = Annotated[RunStateTracker, Depends(get_crawl_tracker)]
EnrichmentTrackerDep = Annotated[RunStateTracker, Depends(get_enrichment_tracker)]
