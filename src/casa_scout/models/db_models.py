"""SQLAlchemy ORM models."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from casa_scout.models.pydantic_models import Source


def utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Listing(Base):
    """Real-estate listing discovered on a source site."""

    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint("bedrooms >= 0", name="ck_listings_bedrooms_non_negative"),
        CheckConstraint("bathrooms >= 0", name="ck_listings_bathrooms_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    source: Mapped[str] = mapped_column(Enum(Source), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Pricing
    price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="MXN", nullable=False)

    # Location
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Property details
    bedrooms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bathrooms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    area_sqm: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    property_type: Mapped[str] = mapped_column(String(50), default="Otro", nullable=False)
    link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Enrichment (detail page)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    neighborhood: Mapped[str | None] = mapped_column(String(200), nullable=True)
    total_area_sqm: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    built_area_sqm: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    parking_spaces: Mapped[int | None] = mapped_column(Integer, nullable=True)
    property_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amenities: Mapped[list[str]] = mapped_column(JSON, default=list)
    features: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    images: Mapped[list[str]] = mapped_column(JSON, default=list)
    technical_specs: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    floor_plan_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    seller_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    publish_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    views: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Enrichment state; detail_scraped only ever goes False -> True
    detail_scraped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    last_scraped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Timestamps
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False, index=True
    )
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, external_id='{self.external_id}', price={self.price})>"
