"""Extractor interface shared by per-site strategies."""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import ClassVar

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from casa_scout.errors import ExtractionError
from casa_scout.models.pydantic_models import (
    ListingDetail,
    ScrapedListing,
    SearchDescriptor,
    Source,
)

logger = logging.getLogger(__name__)

# (title keywords, persisted label), checked in order
PROPERTY_TYPE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("casa",), "Casa"),
    (("departamento", "depto"), "Departamento"),
    (("terreno",), "Terreno"),
    (("local",), "Local"),
    (("oficina",), "Oficina"),
    (("bodega",), "Bodega"),
)


def infer_property_type(title: str) -> str:
    """Map a listing title to a property type label."""
    lowered = title.lower()
    for keywords, label in PROPERTY_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return label
    return "Otro"


def clean_text(element: Tag | None) -> str:
    """Whitespace-normalized text of an element, or empty string."""
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


def first_text(root: Tag, selectors: Iterable[str]) -> str:
    """Text of the first selector that matches with non-empty text."""
    for selector in selectors:
        text = clean_text(root.select_one(selector))
        if text:
            return text
    return ""


def first_attr(root: Tag, selectors: Iterable[str], attr: str) -> str:
    """Attribute value of the first matching element that carries it."""
    for selector in selectors:
        element = root.select_one(selector)
        if element is not None:
            value = element.get(attr)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def parse_int(text: str | None) -> int | None:
    """First integer in text, ignoring thousands separators."""
    if not text:
        return None
    match = re.search(r"\d+", text.replace(",", ""))
    return int(match.group()) if match else None


def parse_price(text: str | None) -> Decimal | None:
    """Price digits as a Decimal, or None when the text has no digits."""
    if not text:
        return None
    digits = re.sub(r"[^\d]", "", text)
    return Decimal(digits) if digits else None


def split_location(location: str) -> tuple[str | None, str | None]:
    """Split "colonia, city, state" into (city, state)."""
    parts = [part.strip() for part in location.split(",") if part.strip()]
    if not parts:
        return None, None
    city = parts[-2] if len(parts) > 1 else parts[0]
    return city, parts[-1]


class ListingExtractor(ABC):
    """Per-site extraction strategy.

    Builds page URLs for a descriptor and turns fetched documents into
    listing records. Extraction is pure: no I/O happens here.

    Subclasses must implement:
    - build_search_url(): URL of one results page for a descriptor
    - parse_card(): one result card into a ScrapedListing
    - parse_listing_detail(): a detail page into a ListingDetail
    """

    source: ClassVar[Source]
    BASE_URL: ClassVar[str]
    MAX_PAGES: ClassVar[int]
    CARD_SELECTORS: ClassVar[tuple[str, ...]]

    @abstractmethod
    def build_search_url(self, descriptor: SearchDescriptor, page: int = 1) -> str:
        """Full URL of a results page.

        Args:
            descriptor: Search descriptor.
            page: Page number (1-indexed).

        Returns:
            Absolute URL.
        """
        ...

    @abstractmethod
    def parse_card(self, card: Tag) -> ScrapedListing:
        """Extract one result card.

        Raises:
            ExtractionError: If the card has no stable ID or no title.
        """
        ...

    @abstractmethod
    def parse_listing_detail(self, html: str, now: datetime | None = None) -> ListingDetail:
        """Extract detail attributes from a listing page.

        Args:
            html: Rendered detail page.
            now: Reference time for relative dates.

        Returns:
            ListingDetail; fields not found are left empty.
        """
        ...

    def select_cards(self, soup: BeautifulSoup) -> list[Tag]:
        """Result cards, using the first card selector that matches anything."""
        for selector in self.CARD_SELECTORS:
            cards = soup.select(selector)
            if cards:
                return cards
        return []

    def parse_listing_cards(self, html: str) -> list[ScrapedListing]:
        """Extract all listings from a results page.

        A card that fails extraction is dropped; the rest of the page is kept.

        Args:
            html: Rendered results page.

        Returns:
            Extracted listings in page order.
        """
        soup = BeautifulSoup(html, "html.parser")
        listings: list[ScrapedListing] = []
        for card in self.select_cards(soup):
            try:
                listings.append(self.parse_card(card))
            except ExtractionError as e:
                logger.debug("Dropping %s card: %s", self.source.value, e.message)
            except ValidationError as e:
                logger.debug("Dropping invalid %s card: %s", self.source.value, e)
        return listings

    def absolute_url(self, link: str) -> str:
        """Resolve a possibly relative link against the site base URL."""
        if link.startswith("http"):
            return link
        return f"{self.BASE_URL}{link if link.startswith('/') else '/' + link}"
