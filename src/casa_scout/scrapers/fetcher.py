"""Page fetcher: one results or detail page per call, with status classification."""

import logging

from casa_scout.errors import FetchError, FetchErrorKind
from casa_scout.models.pydantic_models import (
    ListingDetail,
    PageResult,
    SearchDescriptor,
    Source,
)
from casa_scout.scrapers.base import ListingExtractor
from casa_scout.scrapers.browser import BrowserManager
from casa_scout.scrapers.lamudi import LamudiExtractor
from casa_scout.scrapers.mercadolibre import MercadoLibreExtractor

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept-Language": "es-MX,es;q=0.9,en;q=0.8",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Cache-Control": "no-cache",
}

# The source answers throttled clients with 400 rather than 429
RATE_LIMIT_STATUSES = frozenset({400, 403, 429})
NOT_FOUND_STATUSES = frozenset({404, 410})

_EXTRACTORS: dict[Source, type[ListingExtractor]] = {
    Source.MERCADOLIBRE: MercadoLibreExtractor,
    Source.LAMUDI: LamudiExtractor,
}


def get_extractor(source: Source) -> ListingExtractor:
    """Create the extractor for a source.

    Raises:
        ValueError: If no extractor is available for the source.
    """
    if source not in _EXTRACTORS:
        raise ValueError(f"No extractor available for {source.value}")
    return _EXTRACTORS[source]()


def classify_status(status: int) -> FetchErrorKind | None:
    """Classify an HTTP status; None means the body should be parsed."""
    if 200 <= status < 300:
        return None
    if status in RATE_LIMIT_STATUSES:
        return FetchErrorKind.RATE_LIMITED
    if status in NOT_FOUND_STATUSES:
        return FetchErrorKind.NOT_FOUND
    return FetchErrorKind.OTHER


class PageFetcher:
    """Fetches result and detail pages for one source.

    Wraps the browser fetch primitive with the request timeout, status
    classification and the extractor for the source.
    """

    def __init__(
        self,
        browser: BrowserManager,
        extractor: ListingExtractor,
        timeout_seconds: float = 45.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize page fetcher.

        Args:
            browser: HTTP fetch primitive.
            extractor: Extraction strategy for the source.
            timeout_seconds: Per-request timeout.
            headers: Request headers. Defaults to Spanish (Mexico) browser headers.
        """
        self._browser = browser
        self._extractor = extractor
        self._timeout_ms = int(timeout_seconds * 1000)
        self._headers = headers if headers is not None else dict(DEFAULT_HEADERS)

    @property
    def extractor(self) -> ListingExtractor:
        """Extraction strategy in use."""
        return self._extractor

    @property
    def max_pages(self) -> int:
        """Pagination ceiling of the source."""
        return self._extractor.MAX_PAGES

    async def _get(self, url: str) -> str:
        response = await self._browser.get(url, headers=self._headers, timeout_ms=self._timeout_ms)
        kind = classify_status(response.status)
        if kind is not None:
            raise FetchError(kind, url, f"HTTP {response.status}", status=response.status)
        return response.body

    async def fetch(self, descriptor: SearchDescriptor, page_index: int) -> PageResult:
        """Fetch and extract one results page.

        Args:
            descriptor: Search descriptor.
            page_index: Page number (1-indexed).

        Returns:
            PageResult. has_next_page is False once a page comes back empty
            or the ceiling is reached.

        Raises:
            FetchError: On timeout, rate limiting, missing page or other failure.
        """
        if page_index < 1 or page_index > self.max_pages:
            return PageResult(listings=[], has_next_page=False)

        url = self._extractor.build_search_url(descriptor, page_index)
        html = await self._get(url)
        listings = self._extractor.parse_listing_cards(html)
        logger.debug("Page %d of %s yielded %d listings", page_index, url, len(listings))

        return PageResult(
            listings=listings,
            has_next_page=bool(listings) and page_index < self.max_pages,
        )

    async def fetch_detail(self, link: str) -> ListingDetail:
        """Fetch and extract a listing detail page.

        Args:
            link: Listing link, absolute or relative to the source.

        Returns:
            Extracted ListingDetail.

        Raises:
            FetchError: If the page could not be fetched.
        """
        html = await self._get(self._extractor.absolute_url(link))
        return self._extractor.parse_listing_detail(html)
