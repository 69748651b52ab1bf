"""Service layer for crawl runs."""

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from casa_scout.config import CrawlSettings, ScoutConfig
from casa_scout.crawl.descriptors import generate_descriptors, select_descriptors
from casa_scout.database.repository import ListingRepository
from casa_scout.errors import FatalError, FetchError
from casa_scout.models.pydantic_models import (
    BatchUpsertResult,
    CrawlProgress,
    CrawlResult,
    ListingCreate,
    ListingStatistics,
    RateLimitPolicy,
    RunKind,
    RunState,
    RunStatus,
    RunSummary,
    ScrapedListing,
    SearchDescriptor,
)
from casa_scout.scrapers.browser import BrowserConfig, BrowserManager
from casa_scout.scrapers.fetcher import PageFetcher, get_extractor
from casa_scout.services.run_state import RunStateTracker, crawl_state_tracker

logger = logging.getLogger(__name__)

PersistCallback = Callable[[list[ScrapedListing]], BatchUpsertResult]
ProgressCallback = Callable[[CrawlProgress], None]


class SessionDeduplicator:
    """External IDs seen so far in one crawl run, across all descriptors."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._seen

    def filter(self, listings: Iterable[ScrapedListing]) -> list[ScrapedListing]:
        """Return listings not seen before in this run, recording them as seen."""
        survivors = []
        for listing in listings:
            if listing.external_id in self._seen:
                continue
            self._seen.add(listing.external_id)
            survivors.append(listing)
        return survivors


class CrawlDriver:
    """Walks descriptors page by page, deduplicating within the run.

    One descriptor at a time, one page at a time, with a fixed delay
    between pages and a longer one between descriptors. Fetch failures are
    counted and skipped; they never end the run.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        settings: CrawlSettings,
        deduplicator: SessionDeduplicator | None = None,
    ) -> None:
        """Initialize crawl driver.

        Args:
            fetcher: Page fetcher for the source.
            settings: Crawl settings (delays, page limit, rate-limit policy).
            deduplicator: Session deduplicator. A fresh one is used if omitted.
        """
        self._fetcher = fetcher
        self._settings = settings
        self._dedup = deduplicator or SessionDeduplicator()
        self._listings: list[ScrapedListing] = []

    @property
    def listings(self) -> list[ScrapedListing]:
        """Deduplicated listings accumulated so far in this run."""
        return self._listings

    @property
    def page_limit(self) -> int:
        """Pages fetched per descriptor, never above the source ceiling."""
        return min(self._settings.pages_per_search, self._fetcher.max_pages)

    async def crawl(
        self,
        descriptors: Sequence[SearchDescriptor],
        result: CrawlResult | None = None,
        on_descriptor_complete: PersistCallback | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> CrawlResult:
        """Crawl every descriptor in order.

        Args:
            descriptors: Descriptors to run, already shuffled/truncated.
            result: Result to accumulate into; updated in place so a caller
                still sees partial counts if the run is aborted.
            on_descriptor_complete: Called with the new listings of each
                descriptor; its upsert outcome is merged into the result.
            progress_callback: Called at the start of each descriptor.

        Returns:
            CrawlResult with page, listing and persistence counts.
        """
        result = result if result is not None else CrawlResult()
        persisted = BatchUpsertResult(
            inserted=result.inserted, updated=result.updated, errors=list(result.errors)
        )
        total = len(descriptors)

        for index, descriptor in enumerate(descriptors, start=1):
            logger.info("Search %d/%d: %s", index, total, descriptor.description)
            if progress_callback:
                progress_callback(
                    CrawlProgress(
                        descriptor_index=index,
                        total_descriptors=total,
                        description=descriptor.description,
                        unique_listings=len(self._dedup),
                    )
                )

            found = await self.crawl_descriptor(descriptor, result)
            result.unique_listings = len(self._dedup)

            if found and on_descriptor_complete is not None:
                persisted = persisted.merge(on_descriptor_complete(found))
                result.inserted = persisted.inserted
                result.updated = persisted.updated
                result.errors = list(persisted.errors)
            result.descriptors_run += 1

            logger.info(
                "Found %d new listings (%d total unique)", len(found), len(self._dedup)
            )

            if index < total:
                await asyncio.sleep(self._settings.descriptor_delay_seconds)

        return result

    async def crawl_descriptor(
        self, descriptor: SearchDescriptor, result: CrawlResult
    ) -> list[ScrapedListing]:
        """Page through one descriptor.

        Stops at an empty page, at the page limit, or when the fetcher
        reports no next page. A rate-limited page is followed by the
        cooldown; under the skip policy the page index then advances, under
        the retry policy the same page is retried a bounded number of times.

        Args:
            descriptor: Descriptor to crawl.
            result: Result whose page counters are updated in place.

        Returns:
            Listings from this descriptor not seen earlier in the run.
        """
        found: list[ScrapedListing] = []
        page = 1
        retries = 0

        while page <= self.page_limit:
            try:
                page_result = await self._fetcher.fetch(descriptor, page)
            except FetchError as e:
                if e.is_rate_limited:
                    result.pages_rate_limited += 1
                    logger.warning(
                        "Rate limited on page %d of %s, cooling down %.0fs",
                        page,
                        descriptor.description,
                        self._settings.rate_limit_cooldown_seconds,
                    )
                    await asyncio.sleep(self._settings.rate_limit_cooldown_seconds)
                    if (
                        self._settings.rate_limit_policy == RateLimitPolicy.RETRY
                        and retries < self._settings.max_rate_limit_retries
                    ):
                        retries += 1
                        continue
                else:
                    result.pages_failed += 1
                    logger.warning("Failed page %d of %s: %s", page, descriptor.description, e)
                page += 1
                retries = 0
                continue
            except Exception:
                result.pages_failed += 1
                logger.exception("Error crawling page %d, continuing to next page", page)
                page += 1
                retries = 0
                continue

            result.pages_fetched += 1
            result.listings_found += len(page_result.listings)

            survivors = self._dedup.filter(page_result.listings)
            result.duplicates_skipped += len(page_result.listings) - len(survivors)
            found.extend(survivors)
            self._listings.extend(survivors)

            if not page_result.listings:
                logger.info("No more listings found at page %d", page)
                break
            if not page_result.has_next_page or page >= self.page_limit:
                break

            await asyncio.sleep(self._settings.page_delay_seconds)
            page += 1
            retries = 0

        return found


class CrawlService:
    """Service for crawl runs.

    Generates descriptors, drives the crawl, upserts each descriptor's
    listings as soon as it completes and records the run in the crawl state.
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
            state_tracker: Crawl run-state tracker. Defaults to the configured JSON file.
        """
        self._session = session
        self._config = config
        self._settings = config.crawl
        self._repo = ListingRepository(session)
        self._tracker = state_tracker or crawl_state_tracker(config.state)

    def _persist(self, listings: list[ScrapedListing]) -> BatchUpsertResult:
        batch = self._repo.upsert_listings(ListingCreate.from_scraped(item) for item in listings)
        logger.info(
            "Persisted %d listings: %d new, %d updated, %d errors",
            len(listings),
            batch.inserted,
            batch.updated,
            len(batch.errors),
        )
        return batch

    async def run_daily_update(
        self,
        settings: CrawlSettings | None = None,
        progress_callback: ProgressCallback | None = None,
        rng: random.Random | None = None,
    ) -> CrawlResult:
        """Run one crawl and record it in the crawl state.

        Args:
            settings: Crawl settings for this run. Defaults to configured settings.
            progress_callback: Optional callback for progress updates.
            rng: Random source for the descriptor shuffle.

        Returns:
            CrawlResult with counts of processed listings.

        Raises:
            FatalError: If the run aborted. Descriptors finished before the
                failure stay committed and a failed summary is saved.
        """
        settings = settings or self._settings
        self._tracker.load()
        started_at = datetime.now(timezone.utc)
        result = CrawlResult()

        descriptors = select_descriptors(
            generate_descriptors(),
            max_searches=settings.max_searches,
            shuffle=settings.shuffle,
            rng=rng,
        )

        try:
            async with self._create_fetcher(settings) as fetcher:
                driver = CrawlDriver(fetcher, settings)
                await driver.crawl(
                    descriptors,
                    result=result,
                    on_descriptor_complete=self._persist,
                    progress_callback=progress_callback,
                )
        except Exception as e:
            logger.exception("Crawl run failed after %d searches", result.descriptors_run)
            self._record(started_at, result, RunStatus.FAILED, error_message=str(e))
            raise FatalError(f"Crawl run failed: {e}") from e

        self._record(started_at, result, RunStatus.COMPLETED)
        logger.info(
            "Crawl completed: %d searches, %d unique listings, %d new, %d updated",
            result.descriptors_run,
            result.unique_listings,
            result.inserted,
            result.updated,
        )
        return result

    def _record(
        self,
        started_at: datetime,
        result: CrawlResult,
        status: RunStatus,
        error_message: str | None = None,
    ) -> None:
        finished_at = datetime.now(timezone.utc)
        self._tracker.record(
            RunSummary(
                kind=RunKind.CRAWL,
                started_at=started_at,
                finished_at=finished_at,
                duration_seconds=round((finished_at - started_at).total_seconds(), 3),
                status=status,
                processed=result.inserted + result.updated + len(result.errors),
                success=result.inserted + result.updated,
                errors=len(result.errors),
                new_listings=result.inserted,
                updated_listings=result.updated,
                searches_run=result.descriptors_run,
                error_message=error_message,
            )
        )
        self._tracker.save()

    def get_stats(self) -> tuple[ListingStatistics, RunState]:
        """Database statistics together with the crawl run state."""
        return self._repo.get_statistics(), self._tracker.load()

    @asynccontextmanager
    async def _create_fetcher(self, settings: CrawlSettings) -> AsyncIterator[PageFetcher]:
        """Create a page fetcher backed by a browser.

        Args:
            settings: Crawl settings (source, headless, timeout).

        Yields:
            PageFetcher for the configured source.
        """
        async with BrowserManager(BrowserConfig(headless=settings.headless)) as browser:
            yield PageFetcher(
                browser,
                get_extractor(settings.source),
                timeout_seconds=settings.timeout_seconds,
            )
