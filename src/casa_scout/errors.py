"""Error taxonomy for crawl, extraction and persistence failures.

Per-item errors (FetchError, ExtractionError, PersistenceError) are absorbed
by the layer that raises them and surface only as counts. FatalError is the
only error that ends a run early.
"""

from enum import Enum


class ScoutError(Exception):
    """Base exception for casa-scout errors."""


class FetchErrorKind(str, Enum):
    """Classification of a failed page or detail fetch."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    OTHER = "other"


class FetchError(ScoutError):
    """A single page or detail fetch failed.

    Attributes:
        kind: Failure classification.
        url: URL that was requested.
        status: HTTP status if a response was received.
    """

    def __init__(
        self,
        kind: FetchErrorKind,
        url: str,
        message: str = "",
        status: int | None = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.status = status
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message} ({url})")

    @property
    def is_rate_limited(self) -> bool:
        """Whether the source signalled throttling."""
        return self.kind == FetchErrorKind.RATE_LIMITED


class ExtractionError(ScoutError):
    """A listing card or detail document could not be extracted."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        self.message = message
        super().__init__(message)


class PersistenceError(ScoutError):
    """Upserting a single listing record failed."""

    def __init__(self, external_id: str, message: str) -> None:
        self.external_id = external_id
        self.message = message
        super().__init__(f"{external_id}: {message}")


class FatalError(ScoutError):
    """Unexpected failure that aborted a run."""
