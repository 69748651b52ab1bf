"""Service layer for casa-scout business logic."""

from casa_scout.services.crawl_service import CrawlDriver, CrawlService, SessionDeduplicator
from casa_scout.services.enrichment_service import EnrichmentQueue, EnrichmentService
from casa_scout.services.health import check_health
from casa_scout.services.run_state import (
    InMemoryStateStore,
    JsonStateStore,
    RunStateTracker,
    StateStore,
)

__all__ = [
    "CrawlDriver",
    "CrawlService",
    "EnrichmentQueue",
    "EnrichmentService",
    "InMemoryStateStore",
    "JsonStateStore",
    "RunStateTracker",
    "SessionDeduplicator",
    "StateStore",
    "check_health",
]
