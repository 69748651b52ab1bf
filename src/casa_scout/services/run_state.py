"""Durable run state: lifetime counters and bounded run history."""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from casa_scout.config import StateSettings
from casa_scout.models.pydantic_models import RunState, RunStatus, RunSummary

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Storage backend for a RunState document."""

    @abstractmethod
    def load(self) -> RunState | None:
        """Return the stored state, or None if nothing has been saved yet."""
        ...

    @abstractmethod
    def save(self, state: RunState) -> None:
        """Persist the state, replacing any previous version."""
        ...


class JsonStateStore(StateStore):
    """RunState stored as a JSON file, replaced atomically on save."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RunState | None:
        if not self._path.exists():
            return None
        try:
            return RunState.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError):
            logger.warning("Unreadable run state at %s, starting fresh", self._path)
            return None

    def save(self, state: RunState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class InMemoryStateStore(StateStore):
    """Process-local store; state is lost on exit."""

    def __init__(self, state: RunState | None = None) -> None:
        self._state = state

    def load(self) -> RunState | None:
        return self._state.model_copy(deep=True) if self._state is not None else None

    def save(self, state: RunState) -> None:
        self._state = state.model_copy(deep=True)


class RunStateTracker:
    """Loads, updates and saves the RunState for one kind of run.

    Usage:
        tracker = RunStateTracker(JsonStateStore("data/crawl-state.json"))
        tracker.load()
        tracker.record(summary)
        tracker.save()
    """

    def __init__(self, store: StateStore, history_limit: int = 30) -> None:
        """Initialize tracker.

        Args:
            store: Storage backend.
            history_limit: Maximum number of run summaries kept.
        """
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self._store = store
        self._history_limit = history_limit
        self._state = RunState()

    @property
    def state(self) -> RunState:
        """Current in-memory state."""
        return self._state

    def load(self) -> RunState:
        """Load state from the store; a missing state is a zero-valued one."""
        self._state = self._store.load() or RunState()
        return self._state

    def record(self, summary: RunSummary) -> RunState:
        """Append a run summary and accumulate lifetime counters.

        last_attempt always advances; last_run only advances for a
        completed run. The oldest summaries are evicted past the cap.

        Args:
            summary: Summary of the finished run.

        Returns:
            Updated state.
        """
        state = self._state
        state.total_scraped += summary.processed
        state.total_new += summary.new_listings
        state.total_updated += summary.updated_listings
        state.total_success += summary.success
        state.total_errors += summary.errors
        state.last_attempt = summary.started_at
        if summary.status == RunStatus.COMPLETED:
            state.last_run = summary.started_at

        state.runs.append(summary)
        if len(state.runs) > self._history_limit:
            del state.runs[: len(state.runs) - self._history_limit]

        return state

    def save(self) -> None:
        """Persist the current state."""
        self._store.save(self._state)


def crawl_state_tracker(settings: StateSettings) -> RunStateTracker:
    """Tracker for crawl runs backed by the configured JSON file."""
    return RunStateTracker(
        JsonStateStore(settings.crawl_state_path), history_limit=settings.crawl_history_limit
    )


def enrichment_state_tracker(settings: StateSettings) -> RunStateTracker:
    """Tracker for enrichment runs backed by the configured JSON file."""
    return RunStateTracker(
        JsonStateStore(settings.enrichment_state_path),
        history_limit=settings.enrichment_history_limit,
    )
