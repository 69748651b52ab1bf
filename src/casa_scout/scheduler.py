"""Cron-driven scheduler for crawl and enrichment runs."""

import asyncio
import logging
import signal
import threading
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from casa_scout.config import ScoutConfig
from casa_scout.database.engine import get_session
from casa_scout.errors import FatalError
from casa_scout.models.pydantic_models import CrawlResult, EnrichmentResult
from casa_scout.services.crawl_service import CrawlService
from casa_scout.services.enrichment_service import EnrichmentService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunnerState(str, Enum):
    """Whether a run is in progress."""

    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Mutual exclusion for runs: a trigger while running is dropped, not queued.

    The state token moves IDLE -> RUNNING only through try_acquire(), a
    compare-and-set under a lock. Once closed, no new run is admitted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RunnerState.IDLE
        self._closed = False
        self._current: str | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RunnerState.RUNNING

    @property
    def current(self) -> str | None:
        """Name of the run in progress, if any."""
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def try_acquire(self, name: str = "run") -> bool:
        """Move IDLE -> RUNNING. Returns False if running or closed."""
        with self._lock:
            if self._closed or self._state != RunnerState.IDLE:
                return False
            self._state = RunnerState.RUNNING
            self._current = name
            self._idle.clear()
            return True

    def release(self) -> None:
        """Move RUNNING -> IDLE."""
        with self._lock:
            self._state = RunnerState.IDLE
            self._current = None
            self._idle.set()

    def close(self) -> None:
        """Stop admitting new runs; an in-flight run continues."""
        with self._lock:
            self._closed = True

    async def wait_idle(self) -> None:
        """Wait for any in-flight run to finish."""
        await self._idle.wait()

    async def run(self, name: str, func: Callable[[], Awaitable[T]]) -> T | None:
        """Run func unless another run is in progress.

        Args:
            name: Run name for logging.
            func: Coroutine function to run.

        Returns:
            Result of func, or None if the trigger was dropped.
        """
        if not self.try_acquire(name):
            if self._closed:
                logger.warning("Shutting down, %s trigger ignored", name)
            else:
                logger.warning("%s already in progress, %s trigger ignored", self._current, name)
            return None
        try:
            return await func()
        finally:
            self.release()


class CrawlScheduler:
    """Schedules the daily crawl and the periodic enrichment cycle.

    Usage:
        scheduler = CrawlScheduler(config)
        await scheduler.serve()  # until SIGINT/SIGTERM
    """

    CRAWL_JOB_ID = "daily-crawl"
    ENRICHMENT_JOB_ID = "enrichment-cycle"

    def __init__(self, config: ScoutConfig, guard: RunGuard | None = None) -> None:
        """Initialize scheduler.

        Args:
            config: Application configuration.
            guard: Run guard shared with other triggers (e.g. the API).
        """
        self._config = config
        self._guard = guard or RunGuard()
        self._scheduler: AsyncIOScheduler | None = None
        self._stop_event: asyncio.Event | None = None
        self._startup_task: asyncio.Task[None] | None = None

    @property
    def guard(self) -> RunGuard:
        return self._guard

    async def _crawl(self) -> CrawlResult:
        with get_session() as session:
            return await CrawlService(session, self._config).run_daily_update()

    async def _enrich(self) -> EnrichmentResult | None:
        with get_session() as session:
            return await EnrichmentService(session, self._config).run_cycle()

    async def run_daily_update(self) -> CrawlResult | None:
        """Run one crawl unless a run is already in progress."""
        return await self._guard.run("crawl", self._crawl)

    async def run_enrichment_cycle(self) -> EnrichmentResult | None:
        """Run one enrichment cycle unless a run is already in progress."""
        return await self._guard.run("enrichment", self._enrich)

    async def run_once(self) -> CrawlResult | None:
        """Run a single crawl immediately."""
        return await self.run_daily_update()

    async def _scheduled(self, trigger: Callable[[], Awaitable[Any]]) -> None:
        """Run a trigger from a job; a failed run is logged, the schedule continues."""
        try:
            await trigger()
        except FatalError as e:
            logger.error("Scheduled run failed: %s", e)

    def stats(self) -> dict[str, Any]:
        """Crawl statistics, crawl state and scheduler status."""
        with get_session() as session:
            statistics, state = CrawlService(session, self._config).get_stats()
        return {
            "database": statistics.model_dump(mode="json"),
            "crawl_state": {
                "last_run": state.last_run.isoformat() if state.last_run else None,
                "total_scraped": state.total_scraped,
                "total_new": state.total_new,
                "total_updated": state.total_updated,
                "recent_runs": [run.model_dump(mode="json") for run in state.runs[-5:]],
            },
            "runner_state": self._guard.state.value,
            "schedule": self._config.scheduler.crawl_cron,
        }

    def start(self) -> None:
        """Register jobs and start the scheduler on the running event loop."""
        settings = self._config.scheduler
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._scheduled,
            CronTrigger.from_crontab(settings.crawl_cron),
            args=[self.run_daily_update],
            id=self.CRAWL_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._scheduled,
            IntervalTrigger(minutes=settings.enrichment_interval_minutes),
            args=[self.run_enrichment_cycle],
            id=self.ENRICHMENT_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "Scheduler started: crawl '%s', enrichment every %d minutes",
            settings.crawl_cron,
            settings.enrichment_interval_minutes,
        )

    async def shutdown(self) -> None:
        """Stop accepting triggers and wait for the in-flight run."""
        self._guard.close()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self._guard.is_running:
            logger.info("Waiting for %s to finish", self._guard.current)
        await self._guard.wait_idle()
        if self._startup_task is not None:
            task, self._startup_task = self._startup_task, None
            try:
                await task
            except Exception:
                logger.exception("Initial crawl failed")
        logger.info("Scheduler stopped")

    def request_stop(self) -> None:
        """Signal serve() to shut down."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def serve(self) -> None:
        """Run the scheduler until SIGINT or SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop)

        self.start()
        try:
            if self._config.scheduler.run_on_start:
                logger.info("Running initial crawl on start")
                self._startup_task = asyncio.create_task(self._scheduled(self.run_daily_update))
            await self._stop_event.wait()
            logger.info("Shutdown signal received")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.shutdown()
