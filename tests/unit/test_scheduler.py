"""Tests for the run guard and the crawl scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from casa_scout.config import SchedulerSettings, ScoutConfig
from casa_scout.errors import FatalError
from casa_scout.models.pydantic_models import CrawlResult, ListingStatistics, RunState
from casa_scout.scheduler import CrawlScheduler, RunGuard, RunnerState


class TestRunGuard:
    """Tests for RunGuard."""

    def test_acquire_and_release(self) -> None:
        guard = RunGuard()

        assert guard.try_acquire("crawl") is True
        assert guard.state == RunnerState.RUNNING
        assert guard.current == "crawl"
        assert guard.try_acquire("enrichment") is False

        guard.release()

        assert guard.state == RunnerState.IDLE
        assert guard.current is None
        assert guard.try_acquire("enrichment") is True

    def test_closed_guard_admits_nothing(self) -> None:
        guard = RunGuard()
        guard.close()

        assert guard.closed is True
        assert guard.try_acquire() is False

    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_dropped(self) -> None:
        guard = RunGuard()
        started = asyncio.Event()
        finish = asyncio.Event()
        calls = 0

        async def slow_run() -> str:
            nonlocal calls
            calls += 1
            started.set()
            await finish.wait()
            return "done"

        first = asyncio.create_task(guard.run("crawl", slow_run))
        await started.wait()

        assert await guard.run("crawl", slow_run) is None

        finish.set()
        assert await first == "done"
        assert calls == 1
        assert guard.is_running is False

    @pytest.mark.asyncio
    async def test_released_after_failure(self) -> None:
        guard = RunGuard()

        async def failing() -> None:
            raise FatalError("boom")

        with pytest.raises(FatalError):
            await guard.run("crawl", failing)

        assert guard.state == RunnerState.IDLE

    @pytest.mark.asyncio
    async def test_wait_idle(self) -> None:
        guard = RunGuard()
        guard.try_acquire("crawl")
        waiter = asyncio.create_task(guard.wait_idle())
        await asyncio.sleep(0)

        assert not waiter.done()

        guard.release()
        await asyncio.wait_for(waiter, timeout=1)


@pytest.fixture
def config() -> ScoutConfig:
    return ScoutConfig(
        scheduler=SchedulerSettings(crawl_cron="30 3 * * *", enrichment_interval_minutes=15)
    )


class TestCrawlScheduler:
    """Tests for CrawlScheduler."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, config: ScoutConfig) -> None:
        scheduler = CrawlScheduler(config)

        scheduler.start()
        try:
            job_ids = {job.id for job in scheduler._scheduler.get_jobs()}
            assert job_ids == {CrawlScheduler.CRAWL_JOB_ID, CrawlScheduler.ENRICHMENT_JOB_ID}
        finally:
            await scheduler.shutdown()

        assert scheduler.guard.closed is True

    @pytest.mark.asyncio
    async def test_run_daily_update_uses_guard(self, config: ScoutConfig) -> None:
        guard = RunGuard()
        scheduler = CrawlScheduler(config, guard=guard)
        scheduler._crawl = AsyncMock(return_value=CrawlResult(descriptors_run=2))  # type: ignore[method-assign]

        result = await scheduler.run_daily_update()

        assert result is not None
        assert result.descriptors_run == 2

        guard.try_acquire("api-crawl")
        assert await scheduler.run_enrichment_cycle() is None
        guard.release()

    @pytest.mark.asyncio
    async def test_scheduled_failure_is_logged(self, config: ScoutConfig) -> None:
        scheduler = CrawlScheduler(config)
        trigger = AsyncMock(side_effect=FatalError("crawl failed"))

        await scheduler._scheduled(trigger)

        trigger.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_run(self, config: ScoutConfig) -> None:
        scheduler = CrawlScheduler(config)
        finish = asyncio.Event()
        started = asyncio.Event()

        async def slow_crawl() -> CrawlResult:
            started.set()
            await finish.wait()
            return CrawlResult()

        scheduler._crawl = slow_crawl  # type: ignore[method-assign]
        run = asyncio.create_task(scheduler.run_daily_update())
        await started.wait()

        shutdown = asyncio.create_task(scheduler.shutdown())
        await asyncio.sleep(0)
        assert not shutdown.done()
        assert await scheduler.run_daily_update() is None

        finish.set()
        await asyncio.wait_for(shutdown, timeout=1)
        assert (await run) is not None

    @pytest.mark.asyncio
    async def test_serve_stops_on_request(self, config: ScoutConfig) -> None:
        scheduler = CrawlScheduler(config)
        task = asyncio.create_task(scheduler.serve())
        await asyncio.sleep(0.05)

        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=1)

        assert scheduler.guard.closed is True

    @pytest.mark.asyncio
    async def test_failed_initial_crawl_is_collected_on_shutdown(self) -> None:
        config = ScoutConfig(scheduler=SchedulerSettings(run_on_start=True))
        scheduler = CrawlScheduler(config)
        scheduler._crawl = AsyncMock(side_effect=RuntimeError("browser crashed"))  # type: ignore[method-assign]

        task = asyncio.create_task(scheduler.serve())
        await asyncio.sleep(0.05)
        startup = scheduler._startup_task
        scheduler.request_stop()
        await asyncio.wait_for(task, timeout=1)

        assert startup is not None
        assert startup.done()
        assert isinstance(startup.exception(), RuntimeError)
        assert scheduler._startup_task is None
        assert scheduler.guard.is_running is False

    def test_stats(self, config: ScoutConfig) -> None:
        scheduler = CrawlScheduler(config)
        service = MagicMock()
        service.get_stats.return_value = (ListingStatistics(total=7), RunState(total_new=7))

        with (
            patch("casa_scout.scheduler.get_session", MagicMock()),
            patch("casa_scout.scheduler.CrawlService", return_value=service),
        ):
            stats = scheduler.stats()

        assert stats["database"]["total"] == 7
        assert stats["crawl_state"]["total_new"] == 7
        assert stats["crawl_state"]["last_run"] is None
        assert stats["runner_state"] == "idle"
        assert stats["schedule"] == "30 3 * * *"
