"""Integration tests for statistics API endpoints."""

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from casa_scout.api.dependencies import get_config, get_db
from casa_scout.api.main import create_app
from casa_scout.config import ScoutConfig, StateSettings
from casa_scout.database.repository import ListingRepository
from casa_scout.models.db_models import Base
from casa_scout.models.pydantic_models import (
    ListingCreate,
    ListingDetail,
    RunKind,
    RunSummary,
    Source,
)
from casa_scout.services.run_state import crawl_state_tracker


@pytest.fixture
def test_engine(tmp_path: Path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def session_factory(test_engine):
    """Create a session factory for the test database."""
    return sessionmaker(bind=test_engine)


@pytest.fixture
def config(tmp_path: Path) -> ScoutConfig:
    return ScoutConfig(
        state=StateSettings(
            crawl_state_path=tmp_path / "crawl-state.json",
            enrichment_state_path=tmp_path / "enrichment-state.json",
        )
    )


@pytest.fixture
def client(session_factory, config: ScoutConfig):
    """Create a test client with overridden database and config dependencies."""
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_config] = lambda: config
    return TestClient(app)


@pytest.fixture
def sample_listings(session_factory) -> None:
    """Create two houses and an apartment, one of them enriched."""
    session = session_factory()
    repo = ListingRepository(session)
    for external_id, property_type, city, price in [
        ("MLM-1", "Casa", "Zapopan", Decimal("3000000")),
        ("MLM-2", "Casa", "Guadalajara", Decimal("5000000")),
        ("MLM-3", "Departamento", "Guadalajara", None),
    ]:
        repo.upsert_listing(
            ListingCreate(
                source=Source.MERCADOLIBRE,
                external_id=external_id,
                title=f"{property_type} {external_id}",
                property_type=property_type,
                city=city,
                state="Jalisco",
                price=price,
                link=f"https://casa.mercadolibre.com.mx/{external_id}",
            )
        )
    listing = repo.get_listing_by_external_id("MLM-1")
    repo.apply_listing_detail(
        listing.id, ListingDetail(amenities=["Alberca", "Jardín"], parking_spaces=2)
    )
    session.close()


class TestStatsEndpoint:
    """Tests for GET /api/stats."""

    def test_empty_database(self, client: TestClient) -> None:
        response = client.get("/api/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["statistics"]["total"] == 0
        assert data["statistics"]["avg_price"] is None
        assert data["crawl_state"]["last_run"] is None
        assert data["crawl_state"]["runs_recorded"] == 0

    def test_with_listings(self, client: TestClient, sample_listings: None) -> None:
        response = client.get("/api/stats")

        assert response.status_code == 200
        statistics = response.json()["statistics"]
        assert statistics["total"] == 3
        assert statistics["houses"] == 2
        assert statistics["apartments"] == 1
        assert statistics["cities_covered"] == 2
        assert statistics["states_covered"] == 1
        assert statistics["avg_price"] == pytest.approx(4000000)

    def test_source_filter(self, client: TestClient, sample_listings: None) -> None:
        response = client.get("/api/stats", params={"source": "lamudi"})

        assert response.status_code == 200
        assert response.json()["statistics"]["total"] == 0

    def test_invalid_source(self, client: TestClient) -> None:
        response = client.get("/api/stats", params={"source": "craigslist"})

        assert response.status_code == 422

    def test_crawl_state(self, client: TestClient, config: ScoutConfig) -> None:
        tracker = crawl_state_tracker(config.state)
        tracker.load()
        started = datetime(2024, 5, 1, 2, 0, tzinfo=timezone.utc)
        tracker.record(
            RunSummary(
                kind=RunKind.CRAWL,
                started_at=started,
                finished_at=started,
                processed=10,
                success=10,
                new_listings=6,
                updated_listings=4,
            )
        )
        tracker.save()

        state = client.get("/api/stats").json()["crawl_state"]

        assert state["total_new"] == 6
        assert state["total_updated"] == 4
        assert state["success_rate"] == 100
        assert state["runs_recorded"] == 1
        assert state["last_run"].startswith("2024-05-01T02:00")


class TestEnrichmentStatsEndpoint:
    """Tests for GET /api/stats/enrichment."""

    def test_coverage(self, client: TestClient, sample_listings: None) -> None:
        response = client.get("/api/stats/enrichment")

        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["total_properties"] == 3
        assert data["stats"]["with_details"] == 1
        assert data["stats"]["without_details"] == 2
        assert data["stats"]["with_amenities"] == 1
        assert data["enrichment_state"]["total_scraped"] == 0


class TestAmenitiesEndpoint:
    """Tests for GET /api/stats/amenities."""

    def test_top_amenities(self, client: TestClient, sample_listings: None) -> None:
        response = client.get("/api/stats/amenities", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["amenities"][0]["count"] == 1

    def test_limit_validated(self, client: TestClient) -> None:
        assert client.get("/api/stats/amenities", params={"limit": 0}).status_code == 422
