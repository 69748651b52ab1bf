"""Tests for CSV and JSON listing export."""

import csv
import json
from datetime import datetime
from decimal import Decimal
from io import StringIO
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from casa_scout.database.repository import ListingRepository
from casa_scout.export import export_to_csv, export_to_json
from casa_scout.export.csv_exporter import EXPORT_COLUMNS
from casa_scout.models.db_models import Base, Listing
from casa_scout.models.pydantic_models import ListingCreate, ListingDetail, Source

NOW = datetime(2024, 5, 10, 12, 0)


@pytest.fixture
def repo():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield ListingRepository(session)


@pytest.fixture
def listings(repo: ListingRepository) -> list[Listing]:
    house, _ = repo.upsert_listing(
        ListingCreate(
            source=Source.MERCADOLIBRE,
            external_id="MLM-1",
            title="Casa en Coyoacán, jardín",
            price=Decimal("4500000"),
            bedrooms=3,
            bathrooms=2,
            area_sqm=Decimal("180"),
            city="Coyoacán",
            state="Ciudad de México",
            property_type="Casa",
            link="https://casa.mercadolibre.com.mx/MLM-1",
        ),
        now=NOW,
    )
    repo.apply_listing_detail(
        house.id,
        ListingDetail(
            neighborhood="Del Carmen",
            amenities=["Jardín", "Seguridad"],
            images=["https://img/1.jpg", "https://img/2.jpg"],
            parking_spaces=2,
        ),
        now=NOW,
    )
    flat, _ = repo.upsert_listing(
        ListingCreate(
            source=Source.LAMUDI,
            external_id="LAMUDI-depto-88",
            title="Departamento en Polanco",
            currency="USD",
            property_type="Departamento",
        ),
        now=NOW,
    )
    return [repo.get_listing_by_id(house.id), flat]


class TestCsvExport:
    """Tests for export_to_csv()."""

    def test_rows(self, listings: list[Listing]) -> None:
        content = export_to_csv(listings)

        rows = list(csv.DictReader(StringIO(content)))
        assert list(rows[0].keys()) == EXPORT_COLUMNS
        assert len(rows) == 2

        house, flat = rows
        assert house["external_id"] == "MLM-1"
        assert house["source"] == "mercadolibre"
        assert house["title"] == "Casa en Coyoacán, jardín"
        assert Decimal(house["price"]) == Decimal("4500000")
        assert house["amenities"] == "Jardín; Seguridad"
        assert house["image_count"] == "2"
        assert house["neighborhood"] == "Del Carmen"
        assert house["detail_scraped"] == "yes"
        assert house["first_seen_at"].startswith("2024-05-10T12:00")

        assert flat["source"] == "lamudi"
        assert flat["price"] == ""
        assert flat["currency"] == "USD"
        assert flat["amenities"] == ""
        assert flat["detail_scraped"] == "no"

    def test_empty(self) -> None:
        content = export_to_csv([])

        assert content.strip() == ",".join(EXPORT_COLUMNS)

    def test_write_to_path(self, listings: list[Listing], tmp_path: Path) -> None:
        path = tmp_path / "listings.csv"

        assert export_to_csv(listings, path) == ""

        with open(path, newline="", encoding="utf-8") as f:
            assert len(list(csv.DictReader(f))) == 2


class TestJsonExport:
    """Tests for export_to_json()."""

    def test_document(self, listings: list[Listing]) -> None:
        data = json.loads(export_to_json(listings))

        assert data["count"] == 2
        assert data["by_source"] == {"mercadolibre": 1, "lamudi": 1}
        assert "exported_at" in data
        house = data["listings"][0]
        assert house["external_id"] == "MLM-1"
        assert house["source"] == "mercadolibre"
        assert house["amenities"] == ["Jardín", "Seguridad"]
        assert house["detail_scraped"] is True
        assert data["listings"][1]["price"] is None

    def test_non_ascii_preserved(self, listings: list[Listing]) -> None:
        assert "Coyoacán" in export_to_json(listings)

    def test_write_to_stream(self, listings: list[Listing]) -> None:
        buffer = StringIO()

        assert export_to_json(listings, buffer, indent=0) == ""
        assert json.loads(buffer.getvalue())["count"] == 2
