"""Derived enrichment health signal."""

from datetime import datetime, timedelta, timezone

from casa_scout.models.pydantic_models import HealthReport, RunState


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def check_health(
    state: RunState,
    pending: int,
    stale_after_hours: float = 2.0,
    now: datetime | None = None,
) -> HealthReport:
    """Report whether enrichment is keeping up.

    Enrichment is stuck when listings are waiting for details but no
    enrichment run has completed within the freshness threshold.

    Args:
        state: Enrichment run state.
        pending: Number of listings still missing details.
        stale_after_hours: Freshness threshold.
        now: Reference time.

    Returns:
        HealthReport.
    """
    now = now or datetime.now(timezone.utc)
    needs_enrichment = pending > 0
    recently_run = state.last_run is not None and (
        now - _as_utc(state.last_run) < timedelta(hours=stale_after_hours)
    )

    return HealthReport(
        needs_enrichment=needs_enrichment,
        pending=pending,
        last_run=state.last_run,
        recently_run=recently_run,
        stuck=needs_enrichment and not recently_run,
    )
