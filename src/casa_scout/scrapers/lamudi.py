"""Lamudi (lamudi.com.mx) extractor."""

import re
from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from bs4 import BeautifulSoup, Tag

from casa_scout.errors import ExtractionError
from casa_scout.models.pydantic_models import (
    ListingDetail,
    ScrapedListing,
    SearchDescriptor,
    Source,
)
from casa_scout.scrapers.base import (
    ListingExtractor,
    clean_text,
    first_attr,
    first_text,
    infer_property_type,
    parse_int,
    parse_price,
    split_location,
)

PRICE_PATTERN = re.compile(r"(US)?\$\s?[\d,]+(\s*(MXN|USD))?")
BEDROOMS_PATTERN = re.compile(r"(\d+)\s*(rec[áa]maras?|habitaciones?|rec\.)", re.IGNORECASE)
BATHROOMS_PATTERN = re.compile(r"(\d+)\s*ba[ñn]os?", re.IGNORECASE)
AREA_PATTERN = re.compile(r"(\d+)\s*m[²2]", re.IGNORECASE)
TITLE_PATTERN = re.compile(r"(Casa|Departamento|Local|Oficina|Bodega|Terreno)[^,$]+", re.IGNORECASE)

# Descriptor property-type slug -> Lamudi path segment
PROPERTY_TYPE_SLUGS = {
    "casas": "casa",
    "departamentos": "departamento",
    "terrenos": "terreno",
    "locales": "local-comercial",
    "oficinas": "oficina",
    "bodegas": "bodega",
}
OPERATION_SLUGS = {"venta": "for-sale", "renta": "for-rent"}

EXTERNAL_ID_MAX_LENGTH = 50


class LamudiExtractor(ListingExtractor):
    """Extractor for Lamudi Mexico listings.

    Results pages are addressed with ``?page=N`` and browsing stops after
    10 pages. Descriptor facets without a Lamudi equivalent (price, area,
    bedrooms) are not encoded in the URL.
    """

    source: ClassVar[Source] = Source.LAMUDI
    BASE_URL: ClassVar[str] = "https://www.lamudi.com.mx"
    MAX_PAGES: ClassVar[int] = 10
    CARD_SELECTORS: ClassVar[tuple[str, ...]] = (
        ".listings__cards > div",
        ".listings__cards > a",
        ".ListingCell-row",
        "div[data-listing-id]",
        ".listing-card",
        "article.listing",
        ".property-card",
    )

    def build_search_url(self, descriptor: SearchDescriptor, page: int = 1) -> str:
        facets = descriptor.facets
        segments = []
        if location := facets.get("location"):
            segments.append(str(location))
        if property_type := PROPERTY_TYPE_SLUGS.get(str(facets.get("property_type", ""))):
            segments.append(property_type)
        segments.append(OPERATION_SLUGS.get(str(facets.get("operation", "venta")), "for-sale"))

        url = f"{self.BASE_URL}/{'/'.join(segments)}/"
        return url if page == 1 else f"{url}?page={page}"

    def parse_card(self, card: Tag) -> ScrapedListing:
        link = card.get("href") if card.name == "a" else first_attr(card, ("a[href]",), "href")
        if not isinstance(link, str) or not link:
            raise ExtractionError("card without link", source=self.source.value)

        parts = [part for part in link.split("?")[0].split("/") if part]
        slug = re.sub(r"[^a-zA-Z0-9-]", "", parts[-1] if parts else "")
        if not slug:
            raise ExtractionError(f"cannot derive id from {link}", source=self.source.value)
        external_id = f"LAMUDI-{slug}"[:EXTERNAL_ID_MAX_LENGTH]

        text = clean_text(card)
        title = first_attr(card, ("img[alt]",), "alt") or first_text(
            card, (".listing-card__title", "h2", "h3")
        )
        if not title and (match := TITLE_PATTERN.search(text)):
            title = match.group(0).strip()
        if not title:
            raise ExtractionError(f"{external_id} has no title", source=self.source.value)

        price_match = PRICE_PATTERN.search(text)
        price_text = price_match.group(0) if price_match else ""
        location = first_text(card, (".listing-card__location", '[class*="location"]'))
        city, state = split_location(location)

        return ScrapedListing(
            source=self.source,
            external_id=external_id,
            title=title,
            price=parse_price(price_text),
            currency="USD" if "US" in price_text else "MXN",
            location=location or None,
            city=city,
            state=state,
            country="México",
            bedrooms=self._count(text, BEDROOMS_PATTERN),
            bathrooms=self._count(text, BATHROOMS_PATTERN),
            area_sqm=Decimal(match.group(1)) if (match := AREA_PATTERN.search(text.replace(",", ""))) else None,
            property_type=infer_property_type(title),
            link=self.absolute_url(link),
            image_url=first_attr(card, ("img[src]",), "src")
            or first_attr(card, ("img[data-src]",), "data-src")
            or None,
        )

    @staticmethod
    def _count(text: str, pattern: re.Pattern[str]) -> int:
        match = pattern.search(text)
        return int(match.group(1)) if match else 0

    def parse_listing_detail(self, html: str, now: datetime | None = None) -> ListingDetail:
        soup = BeautifulSoup(html, "html.parser")

        amenities: list[str] = []
        for element in soup.select(".facilities__item, [class*='amenit']"):
            amenity = clean_text(element)
            if amenity and amenity not in amenities:
                amenities.append(amenity)

        images: list[str] = []
        for img in soup.select(".swiper-slide img, .gallery img"):
            src = img.get("data-src") or img.get("src")
            if isinstance(src, str) and src.startswith("http") and src not in images:
                images.append(src)

        details: dict[str, str] = {}
        for row in soup.select(".details-item, .place-features__item"):
            key = clean_text(row.select_one(".details-item__key, .place-features__label"))
            value = clean_text(row.select_one(".details-item__value, .place-features__value"))
            if key and value:
                details[key] = value

        description = first_text(soup, (".description__body", '[class*="description"]'))

        return ListingDetail(
            description=description[:5000] or None,
            full_address=first_text(soup, (".location-map__location-address", '[class*="address"]')) or None,
            total_area_sqm=self._detail_area(details, "Superficie total", "Terreno"),
            built_area_sqm=self._detail_area(details, "Superficie construida", "Construcción"),
            parking_spaces=parse_int(details.get("Estacionamientos")),
            property_age=parse_int(details.get("Antigüedad")),
            amenities=amenities,
            features=details,
            images=images,
        )

    @staticmethod
    def _detail_area(details: dict[str, str], *labels: str) -> Decimal | None:
        for label in labels:
            number = parse_int(details.get(label))
            if number is not None:
                return Decimal(number)
        return None
