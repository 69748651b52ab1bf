"""Service layer for detail enrichment."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from casa_scout.config import EnrichmentSettings, ScoutConfig
from casa_scout.database.repository import ListingRepository
from casa_scout.errors import FatalError, PersistenceError
from casa_scout.models.db_models import Listing
from casa_scout.models.pydantic_models import (
    AmenityCount,
    EnrichmentItem,
    EnrichmentResult,
    EnrichmentStats,
    HealthReport,
    ListingDetail,
    RunKind,
    RunState,
    RunStatus,
    RunSummary,
    Source,
)
from casa_scout.scrapers.browser import BrowserConfig, BrowserManager
from casa_scout.scrapers.fetcher import PageFetcher, get_extractor
from casa_scout.services.health import check_health
from casa_scout.services.run_state import RunStateTracker, enrichment_state_tracker

logger = logging.getLogger(__name__)

DetailFetcher = Callable[[str], Awaitable[ListingDetail]]
ProgressCallback = Callable[[EnrichmentItem], None]


class EnrichmentQueue:
    """Fills in detail attributes for listings that do not have them yet.

    Candidates are processed in fixed-size batches, with a delay between
    batches and a shorter one between items of a batch. A failed item is
    marked as attempted and stays eligible for a later run.
    """

    def __init__(
        self,
        repository: ListingRepository,
        fetch_detail: DetailFetcher,
        settings: EnrichmentSettings | None = None,
    ) -> None:
        """Initialize enrichment queue.

        Args:
            repository: Listing repository.
            fetch_detail: Coroutine returning the ListingDetail for a link.
            settings: Batch size, delays and candidate window.
        """
        self._repo = repository
        self._fetch_detail = fetch_detail
        self._settings = settings or EnrichmentSettings()

    def select_candidates(
        self,
        limit: int | None = None,
        source: Source | None = None,
        only_recent: bool | None = None,
    ) -> list[Listing]:
        """Listings needing details, most recently discovered first.

        Args:
            limit: Maximum number of candidates. Defaults to the configured limit.
            source: Restrict to one source.
            only_recent: Restrict to listings discovered within the recent window.

        Returns:
            Listings with detail_scraped = False and a link.
        """
        return self._repo.select_enrichment_candidates(
            limit=limit if limit is not None else self._settings.limit,
            source=source,
            only_recent=self._settings.only_recent if only_recent is None else only_recent,
            recent_days=self._settings.recent_days,
        )

    async def process_batch(
        self,
        candidates: Sequence[Listing],
        progress_callback: ProgressCallback | None = None,
    ) -> EnrichmentResult:
        """Enrich each candidate once, in order.

        Args:
            candidates: Listings to enrich.
            progress_callback: Called after each candidate.

        Returns:
            EnrichmentResult with per-item outcomes.
        """
        result = EnrichmentResult()

        for index, listing in enumerate(candidates):
            item = await self._process_one(listing)
            result.processed += 1
            if item.success:
                result.success += 1
            else:
                result.errors += 1
            result.items.append(item)

            if progress_callback:
                progress_callback(item)

            if index < len(candidates) - 1:
                await asyncio.sleep(self._settings.item_delay_seconds)

        return result

    async def _process_one(self, listing: Listing) -> EnrichmentItem:
        listing_id = listing.id
        external_id = listing.external_id
        try:
            if not listing.link:
                raise ValueError("listing has no link")
            detail = await self._fetch_detail(listing.link)
            self._repo.apply_listing_detail(listing_id, detail)
        except Exception as e:
            logger.warning("Failed to enrich listing %s: %s", external_id, e)
            try:
                self._repo.mark_detail_attempted(listing_id)
            except PersistenceError:
                logger.exception("Failed to record enrichment attempt for %s", external_id)
            return EnrichmentItem(id=listing_id, external_id=external_id, success=False, error=str(e))

        logger.debug("Enriched listing %s", external_id)
        return EnrichmentItem(id=listing_id, external_id=external_id, success=True)

    async def process_queue(
        self,
        limit: int | None = None,
        source: Source | None = None,
        only_recent: bool | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> EnrichmentResult:
        """Select candidates and process them in batches.

        Args:
            limit: Maximum number of candidates.
            source: Restrict to one source.
            only_recent: Restrict to recently discovered listings.
            progress_callback: Called after each candidate.

        Returns:
            Combined EnrichmentResult over all batches.
        """
        candidates = self.select_candidates(limit=limit, source=source, only_recent=only_recent)
        if not candidates:
            logger.info("No listings need enrichment")
            return EnrichmentResult()

        batch_size = self._settings.batch_size
        batches = [candidates[i : i + batch_size] for i in range(0, len(candidates), batch_size)]
        logger.info(
            "Enriching %d listings in %d batches of up to %d",
            len(candidates),
            len(batches),
            batch_size,
        )

        total = EnrichmentResult()
        for number, batch in enumerate(batches, start=1):
            logger.info("Processing batch %d/%d", number, len(batches))
            batch_result = await self.process_batch(batch, progress_callback)
            total.processed += batch_result.processed
            total.success += batch_result.success
            total.errors += batch_result.errors
            total.items.extend(batch_result.items)

            if number < len(batches):
                await asyncio.sleep(self._settings.batch_delay_seconds)

        return total

    def get_stats(self, source: Source | None = None) -> EnrichmentStats:
        """Aggregate enrichment coverage."""
        return self._repo.get_enrichment_stats(source)

    def get_top_amenities(self, limit: int = 20) -> list[AmenityCount]:
        """Most frequent amenities across enriched listings."""
        return self._repo.get_top_amenities(limit)


class EnrichmentService:
    """Service for enrichment cycles.

    Wraps the enrichment queue with a throttle (a cycle is skipped when the
    last completed one is too recent or nothing is pending) and records
    each cycle in the enrichment run state.
    """

    def __init__(
        self,
        session: Session,
        config: ScoutConfig,
        state_tracker: RunStateTracker | None = None,
    ) -> None:
        """Initialize with database session and configuration.

        Args:
            session: SQLAlchemy session instance.
            config: Application configuration.
            state_tracker: Enrichment run-state tracker. Defaults to the configured JSON file.
        """
        self._session = session
        self._config = config
        self._settings = config.enrichment
        self._repo = ListingRepository(session)
        self._tracker = state_tracker or enrichment_state_tracker(config.state)

    def should_run(self, state: RunState, now: datetime | None = None) -> bool:
        """Whether a non-forced cycle should run now."""
        now = now or datetime.now(timezone.utc)
        if state.last_run is not None:
            last_run = state.last_run
            if last_run.tzinfo is None:
                last_run = last_run.replace(tzinfo=timezone.utc)
            if now - last_run < timedelta(hours=self._settings.min_interval_hours):
                logger.info("Enrichment ran at %s, skipping this cycle", last_run.isoformat())
                return False

        if self._repo.count_pending_enrichment() == 0:
            logger.info("All listings have details, skipping this cycle")
            return False

        return True

    async def run_cycle(
        self,
        force: bool = False,
        limit: int | None = None,
        only_recent: bool | None = None,
        source: Source | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> EnrichmentResult | None:
        """Run one enrichment cycle.

        Args:
            force: Run even if throttled or nothing is pending.
            limit: Maximum number of candidates.
            only_recent: Restrict to recently discovered listings.
            source: Restrict to one source. Defaults to the crawl source.
            progress_callback: Called after each candidate.

        Returns:
            EnrichmentResult, or None if the cycle was skipped.

        Raises:
            FatalError: If the cycle aborted. Items already enriched stay
                committed and a failed summary is saved.
        """
        state = self._tracker.load()
        if not force and not self.should_run(state):
            return None

        source = source or self._config.crawl.source
        started_at = datetime.now(timezone.utc)
        result = EnrichmentResult()

        try:
            async with self._create_fetcher(source) as fetcher:
                queue = EnrichmentQueue(self._repo, fetcher.fetch_detail, self._settings)
                result = await queue.process_queue(
                    limit=limit,
                    source=source,
                    only_recent=only_recent,
                    progress_callback=progress_callback,
                )
        except Exception as e:
            logger.exception("Enrichment cycle failed")
            self._record(started_at, result, RunStatus.FAILED, error_message=str(e))
            raise FatalError(f"Enrichment cycle failed: {e}") from e

        self._record(started_at, result, RunStatus.COMPLETED)
        logger.info(
            "Enrichment completed: %d processed, %d enriched, %d failed",
            result.processed,
            result.success,
            result.errors,
        )
        return result

    def _record(
        self,
        started_at: datetime,
        result: EnrichmentResult,
        status: RunStatus,
        error_message: str | None = None,
    ) -> None:
        finished_at = datetime.now(timezone.utc)
        self._tracker.record(
            RunSummary(
                kind=RunKind.ENRICHMENT,
                started_at=started_at,
                finished_at=finished_at,
                duration_seconds=round((finished_at - started_at).total_seconds(), 3),
                status=status,
                processed=result.processed,
                success=result.success,
                errors=result.errors,
                error_message=error_message,
            )
        )
        self._tracker.save()

    def get_stats(self) -> tuple[EnrichmentStats, RunState]:
        """Enrichment coverage together with the enrichment run state."""
        return self._repo.get_enrichment_stats(), self._tracker.load()

    def get_top_amenities(self, limit: int = 20) -> list[AmenityCount]:
        """Most frequent amenities across enriched listings."""
        return self._repo.get_top_amenities(limit)

    def check_health(self, now: datetime | None = None) -> HealthReport:
        """Derived health signal for the enrichment cycle."""
        return check_health(
            self._tracker.load(),
            pending=self._repo.count_pending_enrichment(),
            stale_after_hours=self._config.health.stale_after_hours,
            now=now,
        )

    @asynccontextmanager
    async def _create_fetcher(self, source: Source) -> AsyncIterator[PageFetcher]:
        """Create a page fetcher backed by a browser.

        Args:
            source: Source whose detail pages are fetched.

        Yields:
            PageFetcher for the source.
        """
        crawl = self._config.crawl
        async with BrowserManager(BrowserConfig(headless=crawl.headless)) as browser:
            yield PageFetcher(browser, get_extractor(source), timeout_seconds=crawl.timeout_seconds)
