"""Tests for shared extraction helpers."""

from decimal import Decimal

import pytest
from bs4 import BeautifulSoup

from casa_scout.scrapers.base import (
    clean_text,
    first_attr,
    first_text,
    infer_property_type,
    parse_int,
    parse_price,
    split_location,
)
from casa_scout.scrapers.mercadolibre import MercadoLibreExtractor


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Casa en venta en Coyoacán", "Casa"),
        ("Hermoso Departamento con vista", "Departamento"),
        ("Depto amueblado en renta", "Departamento"),
        ("Terreno de 500 m²", "Terreno"),
        ("Local comercial sobre avenida", "Local"),
        ("Oficina en Polanco", "Oficina"),
        ("Bodega industrial", "Bodega"),
        ("Penthouse de lujo", "Otro"),
    ],
)
def test_infer_property_type(title: str, expected: str) -> None:
    assert infer_property_type(title) == expected


class TestParsing:
    """Tests for number and location parsing."""

    def test_parse_int_ignores_thousands_separator(self) -> None:
        assert parse_int("1,250 visitas") == 1250

    def test_parse_int_takes_first_number(self) -> None:
        assert parse_int("2.5 baños") == 2

    def test_parse_int_without_digits(self) -> None:
        assert parse_int("sin datos") is None
        assert parse_int(None) is None

    def test_parse_price(self) -> None:
        assert parse_price("$ 4,500,000") == Decimal("4500000")
        assert parse_price("Consultar precio") is None

    def test_split_location(self) -> None:
        assert split_location("Del Valle, Benito Juárez, Distrito Federal") == (
            "Benito Juárez",
            "Distrito Federal",
        )
        assert split_location("Mérida") == ("Mérida", "Mérida")
        assert split_location("") == (None, None)


class TestSelectors:
    """Tests for selector helpers."""

    def test_first_text_skips_empty_matches(self) -> None:
        soup = BeautifulSoup('<div><h2 class="a"> </h2><h3>Casa   en   venta</h3></div>', "html.parser")

        assert first_text(soup, ("h2.a", "h3")) == "Casa en venta"
        assert clean_text(None) == ""

    def test_first_attr(self) -> None:
        soup = BeautifulSoup('<div><img alt=""><img alt="Fachada"></div>', "html.parser")

        assert first_attr(soup, ("img[alt]",), "alt") == ""
        assert first_attr(soup, ('img[alt="Fachada"]',), "alt") == "Fachada"


def test_absolute_url() -> None:
    extractor = MercadoLibreExtractor()

    assert extractor.absolute_url("/MLM-1-casa") == "https://inmuebles.mercadolibre.com.mx/MLM-1-casa"
    assert extractor.absolute_url("MLM-1-casa") == "https://inmuebles.mercadolibre.com.mx/MLM-1-casa"
    assert extractor.absolute_url("https://casa.mercadolibre.com.mx/MLM-1") == (
        "https://casa.mercadolibre.com.mx/MLM-1"
    )
