"""Repository layer for database operations."""

import functools
import logging
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from sqlalchemy import case, desc, func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Query, Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from typing_extensions import ParamSpec

from casa_scout.errors import PersistenceError
from casa_scout.models.db_models import Listing
from casa_scout.models.pydantic_models import (
    AmenityCount,
    BatchUpsertResult,
    EnrichmentStats,
    ListingCreate,
    ListingDetail,
    ListingStatistics,
    Source,
    UpsertError,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Retry configuration for database operations
DB_RETRY_MAX_ATTEMPTS = 5
DB_RETRY_WAIT_MIN = 1  # seconds
DB_RETRY_WAIT_MAX = 8  # seconds
DB_RETRY_WAIT_MULTIPLIER = 2

# Fields refreshed from every new observation, nulls included
_CORE_FIELDS = (
    "source",
    "title",
    "currency",
    "bedrooms",
    "bathrooms",
    "property_type",
    "price",
    "location",
    "city",
    "state",
    "country",
    "area_sqm",
    "link",
    "image_url",
)


def _rollback_session(retry_state: RetryCallState) -> None:
    """Roll back the repository's session so the next attempt starts clean."""
    owner = retry_state.args[0] if retry_state.args else None
    session = getattr(owner, "_session", None)
    if isinstance(session, Session):
        session.rollback()
    logger.warning(
        "Database busy, retrying %s (attempt %d)",
        getattr(retry_state.fn, "__name__", "operation"),
        retry_state.attempt_number,
    )


def with_db_retry(func: Callable[P, R]) -> Callable[P, R]:
    """Decorator to retry database operations on SQLite lock errors.

    Retries on sqlalchemy.exc.OperationalError using exponential backoff.
    When the decorated callable is a repository method, its session is
    rolled back between attempts.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        retrying = Retrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(DB_RETRY_MAX_ATTEMPTS),
            wait=wait_exponential(
                multiplier=DB_RETRY_WAIT_MULTIPLIER,
                min=DB_RETRY_WAIT_MIN,
                max=DB_RETRY_WAIT_MAX,
            ),
            before_sleep=_rollback_session,
            reraise=True,
        )
        return retrying(func, *args, **kwargs)

    return wrapper


def _utc(value: datetime | None) -> datetime:
    return value if value is not None else datetime.now(timezone.utc)


class ListingRepository:
    """Repository for Listing persistence keyed by external ID."""

    def __init__(self, session: Session) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session instance.
        """
        self._session = session

    # ========== READ ==========

    def get_listing_by_id(self, listing_id: int) -> Listing | None:
        """Get a listing by its ID.

        Args:
            listing_id: Listing ID.

        Returns:
            Listing if found, None otherwise.
        """
        return self._session.query(Listing).filter(Listing.id == listing_id).first()

    def get_listing_by_external_id(self, external_id: str) -> Listing | None:
        """Get a listing by its source-derived external ID.

        Args:
            external_id: Stable external identifier.

        Returns:
            Listing if found, None otherwise.
        """
        return (
            self._session.query(Listing).filter(Listing.external_id == external_id).first()
        )

    def get_existing_external_ids(self, source: Source | None = None) -> set[str]:
        """Get the set of external IDs already persisted.

        Args:
            source: Restrict to one source.

        Returns:
            Set of external IDs.
        """
        query = self._session.query(Listing.external_id)
        if source is not None:
            query = query.filter(Listing.source == source)
        return {row[0] for row in query.all()}

    def _apply_listing_filters(
        self,
        query: Query[Listing],
        source: Source | None = None,
        property_type: str | None = None,
        state: str | None = None,
        detail_scraped: bool | None = None,
    ) -> Query[Listing]:
        """Apply common filters to a listing query."""
        if source is not None:
            query = query.filter(Listing.source == source)

        if property_type is not None:
            query = query.filter(Listing.property_type == property_type)

        if state is not None:
            query = query.filter(Listing.state == state)

        if detail_scraped is not None:
            query = query.filter(Listing.detail_scraped.is_(detail_scraped))

        return query

    def get_listings(
        self,
        source: Source | None = None,
        property_type: str | None = None,
        state: str | None = None,
        detail_scraped: bool | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Listing]:
        """Get listings with optional filters, most recently discovered first.

        Args:
            source: Filter by source.
            property_type: Filter by property type label (e.g. "Casa").
            state: Filter by state name.
            detail_scraped: Filter by enrichment status.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            List of matching Listing objects.
        """
        query = self._apply_listing_filters(
            self._session.query(Listing),
            source=source,
            property_type=property_type,
            state=state,
            detail_scraped=detail_scraped,
        )
        query = query.order_by(desc(Listing.first_seen_at), desc(Listing.id))

        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        return query.all()

    def count_listings(
        self,
        source: Source | None = None,
        property_type: str | None = None,
        state: str | None = None,
        detail_scraped: bool | None = None,
    ) -> int:
        """Count listings matching the given filters."""
        query = self._apply_listing_filters(
            self._session.query(Listing),
            source=source,
            property_type=property_type,
            state=state,
            detail_scraped=detail_scraped,
        )
        return query.count()

    # ========== UPSERT ==========

    def upsert_listing(
        self, data: ListingCreate, now: datetime | None = None
    ) -> tuple[Listing, bool]:
        """Insert or update a listing keyed by external ID.

        A new row gets first_seen_at = now. An existing row has its core
        fields refreshed and last_seen_at = now; enrichment fields and
        detail_scraped are never touched.

        Args:
            data: Core listing data.
            now: Observation time. Defaults to the current UTC time.

        Returns:
            Tuple of (Listing, created) where created is True if new.

        Raises:
            PersistenceError: If the row could not be written.
        """
        try:
            return self._upsert(data, _utc(now))
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(data.external_id, str(getattr(e, "orig", None) or e)) from e

    @with_db_retry
    def _upsert(self, data: ListingCreate, now: datetime) -> tuple[Listing, bool]:
        existing = self.get_listing_by_external_id(data.external_id)

        if existing is None:
            listing = Listing(
                **data.model_dump(),
                first_seen_at=now,
                last_seen_at=now,
                updated_at=now,
            )
            self._session.add(listing)
            self._session.commit()
            self._session.refresh(listing)
            return listing, True

        for field in _CORE_FIELDS:
            setattr(existing, field, getattr(data, field))

        existing.last_seen_at = now
        existing.updated_at = now

        self._session.commit()
        self._session.refresh(existing)
        return existing, False

    def upsert_listings(
        self, records: Iterable[ListingCreate], now: datetime | None = None
    ) -> BatchUpsertResult:
        """Upsert a batch of listings, attempting every record.

        A failing record is logged and reported in the error list; the rest
        of the batch is still written.

        Args:
            records: Listings to upsert.
            now: Observation time shared by the batch.

        Returns:
            BatchUpsertResult with inserted/updated counts and per-record errors.
        """
        result = BatchUpsertResult()
        for record in records:
            try:
                _, created = self.upsert_listing(record, now=now)
            except PersistenceError as e:
                logger.exception("Failed to upsert listing %s", record.external_id)
                result.errors.append(UpsertError(id=e.external_id, message=e.message))
                continue

            if created:
                result.inserted += 1
            else:
                result.updated += 1

        return result

    # ========== ENRICHMENT ==========

    def select_enrichment_candidates(
        self,
        limit: int = 100,
        source: Source | None = None,
        only_recent: bool = True,
        recent_days: int = 7,
        now: datetime | None = None,
    ) -> list[Listing]:
        """Select listings that still need detail enrichment.

        Args:
            limit: Maximum number of candidates.
            source: Restrict to one source.
            only_recent: Only consider listings first seen within recent_days.
            recent_days: Size of the freshness window in days.
            now: Reference time for the freshness window.

        Returns:
            Listings with detail_scraped = False and a link, newest first.
        """
        query = self._session.query(Listing).filter(
            Listing.detail_scraped.is_(False),
            Listing.link.isnot(None),
            Listing.link != "",
        )
        if source is not None:
            query = query.filter(Listing.source == source)
        if only_recent:
            cutoff = _utc(now) - timedelta(days=recent_days)
            query = query.filter(Listing.first_seen_at >= cutoff)

        return (
            query.order_by(desc(Listing.first_seen_at), desc(Listing.id)).limit(limit).all()
        )

    def count_pending_enrichment(self, source: Source | None = None) -> int:
        """Count listings with a link that still lack details."""
        query = self._session.query(Listing).filter(
            Listing.detail_scraped.is_(False),
            Listing.link.isnot(None),
            Listing.link != "",
        )
        if source is not None:
            query = query.filter(Listing.source == source)
        return query.count()

    def apply_listing_detail(
        self, listing_id: int, detail: ListingDetail, now: datetime | None = None
    ) -> Listing | None:
        """Merge detail attributes into a listing and mark it enriched.

        Only enrichment fields are written; core discovery fields are left
        as the crawl last observed them.

        Args:
            listing_id: Listing ID.
            detail: Extracted detail attributes.
            now: Enrichment time.

        Returns:
            Updated Listing if found, None otherwise.

        Raises:
            PersistenceError: If the listing could not be written.
        """
        try:
            return self._apply_detail(listing_id, detail, _utc(now))
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(str(listing_id), str(e)) from e

    @with_db_retry
    def _apply_detail(
        self, listing_id: int, detail: ListingDetail, timestamp: datetime
    ) -> Listing | None:
        listing = self.get_listing_by_id(listing_id)
        if listing is None:
            return None

        for field, value in detail.model_dump().items():
            setattr(listing, field, value)

        listing.detail_scraped = True
        listing.last_scraped_at = timestamp
        listing.updated_at = timestamp

        self._session.commit()
        self._session.refresh(listing)
        return listing

    def mark_detail_attempted(self, listing_id: int, now: datetime | None = None) -> Listing | None:
        """Record a failed enrichment attempt without marking the listing enriched.

        Args:
            listing_id: Listing ID.
            now: Attempt time.

        Returns:
            Updated Listing if found, None otherwise.

        Raises:
            PersistenceError: If the attempt marker could not be written.
        """
        try:
            return self._mark_attempted(listing_id, _utc(now))
        except SQLAlchemyError as e:
            self._session.rollback()
            raise PersistenceError(str(listing_id), str(e)) from e

    @with_db_retry
    def _mark_attempted(self, listing_id: int, timestamp: datetime) -> Listing | None:
        listing = self.get_listing_by_id(listing_id)
        if listing is None:
            return None

        listing.last_scraped_at = timestamp

        self._session.commit()
        self._session.refresh(listing)
        return listing

    # ========== STATISTICS ==========

    def get_enrichment_stats(self, source: Source | None = None) -> EnrichmentStats:
        """Aggregate enrichment coverage.

        Args:
            source: Restrict to one source.

        Returns:
            EnrichmentStats with detail, image and amenity coverage.
        """
        query = self._session.query(
            func.count(Listing.id),
            func.sum(case((Listing.detail_scraped.is_(True), 1), else_=0)),
            func.avg(Listing.views),
            func.avg(Listing.parking_spaces),
        )
        if source is not None:
            query = query.filter(Listing.source == source)
        total, with_details, avg_views, avg_parking = query.one()

        media_query = self._session.query(Listing.images, Listing.amenities)
        if source is not None:
            media_query = media_query.filter(Listing.source == source)
        with_images = 0
        with_amenities = 0
        for images, amenities in media_query.all():
            if images:
                with_images += 1
            if amenities:
                with_amenities += 1

        total = total or 0
        with_details = int(with_details or 0)
        return EnrichmentStats(
            total_properties=total,
            with_details=with_details,
            without_details=total - with_details,
            with_images=with_images,
            with_amenities=with_amenities,
            avg_views=round(float(avg_views), 2) if avg_views is not None else None,
            avg_parking=round(float(avg_parking), 2) if avg_parking is not None else None,
        )

    def get_top_amenities(self, limit: int = 20) -> list[AmenityCount]:
        """Most frequent amenities across enriched listings.

        Args:
            limit: Maximum number of amenities to return.

        Returns:
            AmenityCount entries, most frequent first.
        """
        counter: Counter[str] = Counter()
        rows = self._session.query(Listing.amenities).filter(Listing.amenities.isnot(None))
        for (amenities,) in rows.all():
            if amenities:
                counter.update(amenities)

        return [
            AmenityCount(amenity=amenity, count=count)
            for amenity, count in counter.most_common(limit)
        ]

    def get_statistics(
        self, source: Source | None = None, now: datetime | None = None
    ) -> ListingStatistics:
        """Aggregate statistics over persisted listings.

        Args:
            source: Restrict to one source.
            now: Reference time for the 24-hour discovery window.

        Returns:
            ListingStatistics.
        """
        query = self._session.query(
            func.count(Listing.id),
            func.count(func.distinct(Listing.external_id)),
            func.count(func.distinct(Listing.state)),
            func.count(func.distinct(Listing.city)),
            func.sum(case((Listing.property_type == "Casa", 1), else_=0)),
            func.sum(case((Listing.property_type == "Departamento", 1), else_=0)),
            func.avg(Listing.price),
            func.min(Listing.first_seen_at),
            func.max(Listing.updated_at),
        )
        if source is not None:
            query = query.filter(Listing.source == source)
        row: Any = query.one()

        cutoff = _utc(now) - timedelta(hours=24)
        recent_query = self._session.query(Listing).filter(Listing.first_seen_at > cutoff)
        if source is not None:
            recent_query = recent_query.filter(Listing.source == source)

        return ListingStatistics(
            total=row[0] or 0,
            unique_properties=row[1] or 0,
            states_covered=row[2] or 0,
            cities_covered=row[3] or 0,
            houses=int(row[4] or 0),
            apartments=int(row[5] or 0),
            avg_price=round(float(row[6]), 2) if row[6] is not None else None,
            oldest_listing=row[7],
            newest_update=row[8],
            recent_new=recent_query.count(),
        )
