"""Tests for retrying repository writes on a locked database."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import wait_none

from casa_scout.database.repository import (
    DB_RETRY_MAX_ATTEMPTS,
    ListingRepository,
    with_db_retry,
)
from casa_scout.errors import PersistenceError
from casa_scout.models.db_models import Base
from casa_scout.models.pydantic_models import ListingCreate, Source


def locked() -> OperationalError:
    return OperationalError("COMMIT", None, Exception("database is locked"))


@pytest.fixture
def no_wait():
    """Disable the backoff between attempts."""
    with patch("casa_scout.database.repository.wait_exponential", return_value=wait_none()):
        yield


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def listing() -> ListingCreate:
    return ListingCreate(
        source=Source.MERCADOLIBRE,
        external_id="MLM-555",
        title="Departamento en Polanco",
        link="https://departamento.mercadolibre.com.mx/MLM-555",
    )


class FlakyCommit:
    """Raises a lock error on the first ``failures`` commits, then commits."""

    def __init__(self, session: Session, failures: int) -> None:
        self._commit = session.commit
        self.failures = failures
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise locked()
        self._commit()


class TestUpsertRetry:
    """Lock errors during upsert."""

    def test_locked_commit_is_retried(
        self, no_wait, session: Session, listing: ListingCreate
    ) -> None:
        flaky = FlakyCommit(session, failures=2)

        with patch.object(session, "commit", flaky):
            stored, created = ListingRepository(session).upsert_listing(listing)

        assert created is True
        assert flaky.calls == 3
        assert stored.external_id == "MLM-555"
        assert ListingRepository(session).count_listings() == 1

    def test_persistent_lock_becomes_persistence_error(
        self, no_wait, session: Session, listing: ListingCreate
    ) -> None:
        flaky = FlakyCommit(session, failures=DB_RETRY_MAX_ATTEMPTS)

        with patch.object(session, "commit", flaky):
            with pytest.raises(PersistenceError) as exc_info:
                ListingRepository(session).upsert_listing(listing)

        assert flaky.calls == DB_RETRY_MAX_ATTEMPTS
        assert exc_info.value.external_id == "MLM-555"
        assert "database is locked" in exc_info.value.message
        assert ListingRepository(session).count_listings() == 0

    def test_locked_batch_record_is_reported(
        self, no_wait, session: Session, listing: ListingCreate
    ) -> None:
        flaky = FlakyCommit(session, failures=DB_RETRY_MAX_ATTEMPTS)

        with patch.object(session, "commit", flaky):
            result = ListingRepository(session).upsert_listings([listing])

        assert result.inserted == 0
        assert [error.id for error in result.errors] == ["MLM-555"]


class TestWithDbRetry:
    """The decorator on plain callables."""

    def test_no_retry_on_integrity_error(self) -> None:
        """Constraint violations are not transient and raise immediately."""
        mock_func = MagicMock(side_effect=IntegrityError("CHECK constraint failed", None, None))

        @with_db_retry
        def write() -> str:
            return mock_func()

        with pytest.raises(IntegrityError):
            write()

        assert mock_func.call_count == 1

    def test_exhausted_retries_reraise_operational_error(self, no_wait) -> None:
        mock_func = MagicMock(side_effect=locked())

        @with_db_retry
        def write() -> str:
            return mock_func()

        with pytest.raises(OperationalError):
            write()

        assert mock_func.call_count == DB_RETRY_MAX_ATTEMPTS
