"""MercadoLibre (inmuebles.mercadolibre.com.mx) extractor."""

import re
from datetime import datetime, timedelta, timezone
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

ITEM_ID_PATTERN = re.compile(r"MLM-?(\d+)")
AREA_PATTERN = re.compile(r"(\d+)(?:\s*(?:-|a)\s*(\d+))?")
PUBLISHED_PATTERN = re.compile(r"Publicado hace (\d+) (d[ií]as?|horas?|minutos?)")
VIEWS_PATTERN = re.compile(r"(\d+)\s*visitas")
SQM_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*m²")
THUMBNAIL_SIZE_PATTERN = re.compile(r"-[A-Z]\.")

DESCRIPTION_MAX_LENGTH = 5000


class MercadoLibreExtractor(ListingExtractor):
    """Extractor for MercadoLibre Mexico real-estate listings.

    Results pages are addressed by item offset (48 items per page) and the
    site serves at most 42 pages for any query.
    """

    source: ClassVar[Source] = Source.MERCADOLIBRE
    BASE_URL: ClassVar[str] = "https://inmuebles.mercadolibre.com.mx"
    MAX_PAGES: ClassVar[int] = 42
    ITEMS_PER_PAGE: ClassVar[int] = 48
    CARD_SELECTORS: ClassVar[tuple[str, ...]] = (".ui-search-layout__item",)

    LINK_SELECTORS: ClassVar[tuple[str, ...]] = (
        "a.ui-search-result__link",
        "a.ui-search-link",
        "a.poly-component__title",
        "a[href]",
    )
    TITLE_SELECTORS: ClassVar[tuple[str, ...]] = (
        "h2.ui-search-item__title",
        ".ui-search-item__title",
        ".poly-component__title",
        '[class*="title"]',
    )
    PRICE_SELECTORS: ClassVar[tuple[str, ...]] = (
        ".andes-money-amount__fraction",
        ".price-tag-fraction",
    )
    LOCATION_SELECTORS: ClassVar[tuple[str, ...]] = (
        ".ui-search-item__location",
        ".poly-component__location",
        '[class*="location"]',
    )
    ATTRIBUTE_SELECTORS: ClassVar[tuple[str, ...]] = (
        ".poly-attributes_list__item",
        ".poly-attributes-list__item",
        ".ui-search-item__group__element span",
        ".ui-search-card-attributes__attribute",
    )
    SPEC_ROW_SELECTOR: ClassVar[str] = ".andes-table__row, .specs-item"

    def build_search_url(self, descriptor: SearchDescriptor, page: int = 1) -> str:
        """Results page URL with the item offset for the given page."""
        offset = (page - 1) * self.ITEMS_PER_PAGE + 1
        template = descriptor.query_template
        separator = "&" if "?" in template else "?"
        return f"{self.BASE_URL}{template}{separator}_Desde_{offset}"

    def parse_card(self, card: Tag) -> ScrapedListing:
        link = first_attr(card, self.LINK_SELECTORS, "href")
        id_match = ITEM_ID_PATTERN.search(link)
        if not id_match:
            raise ExtractionError("card without MLM item id", source=self.source.value)

        title = first_attr(card, ("img[title]",), "title") or first_text(
            card, self.TITLE_SELECTORS
        )
        if not title:
            raise ExtractionError(f"card MLM-{id_match.group(1)} has no title", self.source.value)

        symbol = clean_text(card.select_one(".andes-money-amount__currency-symbol"))
        location = first_text(card, self.LOCATION_SELECTORS)
        city, state = split_location(location)
        bedrooms, bathrooms, area = self._parse_attributes(card)

        return ScrapedListing(
            source=self.source,
            external_id=f"MLM-{id_match.group(1)}",
            title=title,
            price=parse_price(first_text(card, self.PRICE_SELECTORS)),
            currency="USD" if symbol in ("U$S", "US$") else "MXN",
            location=location or None,
            city=city,
            state=state,
            country="México",
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            area_sqm=area,
            property_type=infer_property_type(title),
            link=self.absolute_url(link),
            image_url=first_attr(card, ("img[src]",), "src")
            or first_attr(card, ("img[data-src]",), "data-src")
            or None,
        )

    def _parse_attributes(self, card: Tag) -> tuple[int, int, Decimal | None]:
        """Bedrooms, bathrooms and area from the card attribute list."""
        bedrooms = 0
        bathrooms = 0
        area: Decimal | None = None

        for selector in self.ATTRIBUTE_SELECTORS:
            for element in card.select(selector):
                text = clean_text(element).lower()
                if any(word in text for word in ("recámara", "dormitorio", "habitaci")):
                    if bedrooms == 0:
                        bedrooms = parse_int(text) or 0
                elif "baño" in text:
                    if bathrooms == 0:
                        bathrooms = parse_int(text) or 0
                elif ("m²" in text or "m2" in text) and area is None:
                    match = AREA_PATTERN.search(text.replace(",", ""))
                    if match:
                        low = int(match.group(1))
                        high = match.group(2)
                        # A range such as "80 - 120 m²" is stored as its mean
                        area = Decimal(round((low + int(high)) / 2)) if high else Decimal(low)

        return bedrooms, bathrooms, area

    # ========== DETAIL PAGE ==========

    def parse_listing_detail(self, html: str, now: datetime | None = None) -> ListingDetail:
        soup = BeautifulSoup(html, "html.parser")
        now = now or datetime.now(timezone.utc)
        subtitle = clean_text(soup.select_one(".ui-pdp-header__subtitle"))

        description = first_text(
            soup,
            (".ui-pdp-description__content", ".item-description__text", '[class*="description"]'),
        )

        return ListingDetail(
            description=description[:DESCRIPTION_MAX_LENGTH] or None,
            full_address=self._full_address(soup),
            neighborhood=self._neighborhood(soup),
            total_area_sqm=self._area_by_label(soup, ("Superficie total", "Área total")),
            built_area_sqm=self._area_by_label(
                soup, ("Superficie construida", "Área construida", "Construidos")
            ),
            parking_spaces=self._number_by_label(soup, ("Estacionamientos", "Cocheras")),
            property_age=self._number_by_label(soup, ("Antigüedad",)),
            amenities=self._amenities(soup),
            features=self._table(soup, ".andes-table__row, .ui-pdp-features__item",
                                 ".andes-table__header, .ui-pdp-features__label",
                                 ".andes-table__column--value, .ui-pdp-features__text"),
            images=self._images(soup),
            technical_specs=self._technical_specs(soup),
            floor_plan_url=first_attr(
                soup, ('img[alt*="plano"]', 'img[alt*="Plano"]', '[class*="floor-plan"] img'), "src"
            ) or None,
            seller_type=self._seller_type(soup),
            publish_date=self._publish_date(subtitle, now),
            views=int(match.group(1)) if (match := VIEWS_PATTERN.search(subtitle)) else None,
        )

    def _full_address(self, soup: BeautifulSoup) -> str | None:
        for selector in (".ui-pdp-media__body", ".map-address", ".location-info", '[class*="address"]'):
            address = clean_text(soup.select_one(selector))
            if len(address) > 10:
                return address
        return None

    def _neighborhood(self, soup: BeautifulSoup) -> str | None:
        crumbs = soup.select(".andes-breadcrumb__item")
        if crumbs:
            return clean_text(crumbs[-1]) or None
        return clean_text(soup.select_one('[class*="location-detail"]')) or None

    def _rows_with_label(self, soup: BeautifulSoup, labels: tuple[str, ...]) -> list[str]:
        rows = []
        for row in soup.select(self.SPEC_ROW_SELECTOR):
            text = clean_text(row)
            if any(label in text for label in labels):
                rows.append(text)
        return rows

    def _area_by_label(self, soup: BeautifulSoup, labels: tuple[str, ...]) -> Decimal | None:
        for text in self._rows_with_label(soup, labels):
            match = SQM_PATTERN.search(text.replace(",", ""))
            if match:
                return Decimal(match.group(1))
        return None

    def _number_by_label(self, soup: BeautifulSoup, labels: tuple[str, ...]) -> int | None:
        for text in self._rows_with_label(soup, labels):
            number = parse_int(text)
            if number is not None:
                return number
        return None

    def _amenities(self, soup: BeautifulSoup) -> list[str]:
        amenities: list[str] = []
        for element in soup.select(".amenities-item, .ui-pdp-features__item, [class*='amenity']"):
            amenity = clean_text(element)
            if amenity and amenity not in amenities:
                amenities.append(amenity)
        for icon in soup.select(".ui-pdp-media__icon"):
            label_element = icon.find_next_sibling()
            label = clean_text(label_element) if isinstance(label_element, Tag) else ""
            if label and label not in amenities:
                amenities.append(label)
        return amenities

    def _table(
        self, root: Tag, row_selector: str, key_selector: str, value_selector: str
    ) -> dict[str, str]:
        table: dict[str, str] = {}
        for row in root.select(row_selector):
            key = clean_text(row.select_one(key_selector))
            value = clean_text(row.select_one(value_selector))
            if key and value:
                table[key] = value
        return table

    def _technical_specs(self, soup: BeautifulSoup) -> dict[str, str]:
        specs: dict[str, str] = {}
        for container in soup.select(".ui-pdp-specs__table, .specs-container"):
            specs.update(
                self._table(
                    container,
                    ".andes-table__row, .spec-row",
                    ".andes-table__header, .spec-label",
                    ".andes-table__column--value, .spec-value",
                )
            )
        return specs

    def _images(self, soup: BeautifulSoup) -> list[str]:
        images: list[str] = []
        for img in soup.select(".ui-pdp-gallery__figure img, .gallery-image img"):
            src = img.get("data-src") or img.get("src")
            if isinstance(src, str) and src.startswith("http") and src not in images:
                images.append(src)
        if images:
            return images

        # Fall back to thumbnails, upgraded to full size
        for img in soup.select(".ui-pdp-thumbnails__item img"):
            src = img.get("data-src") or img.get("src")
            if isinstance(src, str) and src.startswith("http"):
                full_size = THUMBNAIL_SIZE_PATTERN.sub("-F.", src, count=1)
                if full_size not in images:
                    images.append(full_size)
        return images

    def _seller_type(self, soup: BeautifulSoup) -> str:
        badge = clean_text(soup.select_one(".ui-pdp-seller__badge, .seller-type")).lower()
        info = clean_text(soup.select_one(".ui-pdp-seller__header__info-container")).lower()
        if "inmobiliaria" in badge or "inmobiliaria" in info:
            return "inmobiliaria"
        if "particular" in badge:
            return "particular"
        return "unknown"

    def _publish_date(self, subtitle: str, now: datetime) -> datetime | None:
        match = PUBLISHED_PATTERN.search(subtitle)
        if not match:
            return None
        amount = int(match.group(1))
        unit = match.group(2)
        if unit.startswith("d"):
            return now - timedelta(days=amount)
        if unit.startswith("hora"):
            return now - timedelta(hours=amount)
        return now - timedelta(minutes=amount)
