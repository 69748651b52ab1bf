"""Tests for the page fetcher and status classification."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from casa_scout.errors import FetchError, FetchErrorKind
from casa_scout.models.pydantic_models import SearchDescriptor, Source
from casa_scout.scrapers.browser import FetchResponse
from casa_scout.scrapers.fetcher import PageFetcher, classify_status, get_extractor
from casa_scout.scrapers.lamudi import LamudiExtractor
from casa_scout.scrapers.mercadolibre import MercadoLibreExtractor

CARD = """
<li class="ui-search-layout__item">
  <a class="ui-search-link" href="https://casa.mercadolibre.com.mx/MLM-{id}-casa">
    <h2 class="ui-search-item__title">Casa {id}</h2>
  </a>
</li>
"""

DESCRIPTOR = SearchDescriptor(
    facets={"property_type": "casas", "operation": "venta"},
    query_template="/casas/venta/",
    description="Casas en Venta - Nacional",
)


def results_page(*ids: int) -> str:
    return "<ol>" + "".join(CARD.format(id=item_id) for item_id in ids) + "</ol>"


def make_fetcher(status: int = 200, body: str = "") -> tuple[PageFetcher, MagicMock]:
    browser = MagicMock()
    browser.get = AsyncMock(
        side_effect=lambda url, **kwargs: FetchResponse(url=url, status=status, body=body)
    )
    return PageFetcher(browser, MercadoLibreExtractor(), timeout_seconds=10), browser


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (200, None),
        (204, None),
        (400, FetchErrorKind.RATE_LIMITED),
        (403, FetchErrorKind.RATE_LIMITED),
        (429, FetchErrorKind.RATE_LIMITED),
        (404, FetchErrorKind.NOT_FOUND),
        (410, FetchErrorKind.NOT_FOUND),
        (500, FetchErrorKind.OTHER),
        (503, FetchErrorKind.OTHER),
        (0, FetchErrorKind.OTHER),
    ],
)
def test_classify_status(status: int, expected: FetchErrorKind | None) -> None:
    assert classify_status(status) == expected


def test_get_extractor() -> None:
    assert isinstance(get_extractor(Source.MERCADOLIBRE), MercadoLibreExtractor)
    assert isinstance(get_extractor(Source.LAMUDI), LamudiExtractor)


class TestFetch:
    """Tests for PageFetcher.fetch()."""

    @pytest.mark.asyncio
    async def test_page_with_listings(self) -> None:
        fetcher, browser = make_fetcher(body=results_page(1, 2, 3))

        result = await fetcher.fetch(DESCRIPTOR, 2)

        assert [item.external_id for item in result.listings] == ["MLM-1", "MLM-2", "MLM-3"]
        assert result.has_next_page is True
        browser.get.assert_awaited_once()
        url = browser.get.await_args.args[0]
        assert url.endswith("/casas/venta/?_Desde_49")
        assert browser.get.await_args.kwargs["timeout_ms"] == 10_000
        assert "Accept-Language" in browser.get.await_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_empty_page_has_no_next(self) -> None:
        fetcher, _ = make_fetcher(body="<html><body>No hay publicaciones</body></html>")

        result = await fetcher.fetch(DESCRIPTOR, 1)

        assert result.listings == []
        assert result.has_next_page is False

    @pytest.mark.asyncio
    async def test_last_page_has_no_next(self) -> None:
        fetcher, _ = make_fetcher(body=results_page(1))

        result = await fetcher.fetch(DESCRIPTOR, fetcher.max_pages)

        assert len(result.listings) == 1
        assert result.has_next_page is False

    @pytest.mark.asyncio
    async def test_page_beyond_ceiling_is_not_requested(self) -> None:
        fetcher, browser = make_fetcher(body=results_page(1))

        result = await fetcher.fetch(DESCRIPTOR, fetcher.max_pages + 1)

        assert result.listings == []
        assert result.has_next_page is False
        browser.get.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (400, FetchErrorKind.RATE_LIMITED),
            (404, FetchErrorKind.NOT_FOUND),
            (502, FetchErrorKind.OTHER),
        ],
    )
    async def test_error_status_raises(self, status: int, kind: FetchErrorKind) -> None:
        fetcher, _ = make_fetcher(status=status, body="<html></html>")

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(DESCRIPTOR, 1)

        assert exc_info.value.kind == kind
        assert exc_info.value.status == status
        assert exc_info.value.is_rate_limited is (kind == FetchErrorKind.RATE_LIMITED)

    @pytest.mark.asyncio
    async def test_timeout_propagates(self) -> None:
        fetcher, browser = make_fetcher()
        browser.get.side_effect = FetchError(FetchErrorKind.TIMEOUT, "https://example.com")

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(DESCRIPTOR, 1)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT


class TestFetchDetail:
    """Tests for PageFetcher.fetch_detail()."""

    @pytest.mark.asyncio
    async def test_relative_link_is_resolved(self) -> None:
        html = '<div class="ui-pdp-description__content">Casa amplia</div>'
        fetcher, browser = make_fetcher(body=html)

        detail = await fetcher.fetch_detail("/MLM-1-casa")

        assert detail.description == "Casa amplia"
        assert browser.get.await_args.args[0] == "https://inmuebles.mercadolibre.com.mx/MLM-1-casa"

    @pytest.mark.asyncio
    async def test_missing_listing(self) -> None:
        fetcher, _ = make_fetcher(status=404)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_detail("https://casa.mercadolibre.com.mx/MLM-1-casa")

        assert exc_info.value.kind == FetchErrorKind.NOT_FOUND
