"""Tests for the enrichment health signal."""

from datetime import datetime, timedelta, timezone

from casa_scout.models.pydantic_models import RunState
from casa_scout.services.health import check_health

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def test_never_run_with_pending_is_stuck() -> None:
    report = check_health(RunState(), pending=12, now=NOW)

    assert report.needs_enrichment is True
    assert report.pending == 12
    assert report.last_run is None
    assert report.recently_run is False
    assert report.stuck is True


def test_recent_run_is_healthy() -> None:
    state = RunState(last_run=NOW - timedelta(minutes=30))

    report = check_health(state, pending=12, now=NOW)

    assert report.recently_run is True
    assert report.stuck is False


def test_stale_run_with_pending_is_stuck() -> None:
    state = RunState(last_run=NOW - timedelta(hours=3))

    report = check_health(state, pending=1, stale_after_hours=2, now=NOW)

    assert report.recently_run is False
    assert report.stuck is True


def test_nothing_pending_is_never_stuck() -> None:
    report = check_health(RunState(last_run=NOW - timedelta(days=5)), pending=0, now=NOW)

    assert report.needs_enrichment is False
    assert report.stuck is False


def test_naive_last_run_is_treated_as_utc() -> None:
    state = RunState(last_run=datetime(2024, 5, 10, 11, 30))

    report = check_health(state, pending=1, now=NOW)

    assert report.recently_run is True
