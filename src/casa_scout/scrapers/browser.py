"""Stealth Playwright browser used as the HTTP fetch primitive."""

import logging
import random
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)
from playwright_stealth import Stealth  # type: ignore[import-untyped]

from casa_scout.errors import FetchError, FetchErrorKind

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
]


@dataclass
class BrowserConfig:
    """Configuration for browser manager."""

    headless: bool = True
    locale: str = "es-MX"
    timezone_id: str = "America/Mexico_City"
    viewport_width: int = 1366
    viewport_height: int = 768
    rotation_threshold: int = 10
    user_agents: list[str] = field(default_factory=lambda: DEFAULT_USER_AGENTS.copy())
    navigator_platform: str = "Win32"

    @property
    def languages(self) -> tuple[str, ...]:
        return (self.locale, self.locale.split("-")[0], "en")


@dataclass(frozen=True)
class FetchResponse:
    """Status and rendered body of a fetched URL."""

    url: str
    status: int
    body: str


class BrowserManager:
    """Chromium under playwright-stealth, exposing ``get(url) -> FetchResponse``.

    Non-2xx statuses are returned, not raised, so the page fetcher can
    classify them. The browser context (and with it the user agent and
    cookies) is replaced every ``rotation_threshold`` requests.

    Usage:
        async with BrowserManager(config) as manager:
            response = await manager.get("https://www.lamudi.com.mx/")
    """

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self._config = config or BrowserConfig()
        self._stack: AsyncExitStack | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._request_count = 0

    async def __aenter__(self) -> "BrowserManager":
        if self._stack is not None:
            return self

        stack = AsyncExitStack()
        try:
            stealth = Stealth(
                navigator_languages_override=self._config.languages,
                navigator_platform_override=self._config.navigator_platform,
            )
            playwright = await stack.enter_async_context(stealth.use_async(async_playwright()))
            browser = await playwright.chromium.launch(headless=self._config.headless)
            stack.push_async_callback(browser.close)
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._browser = browser
        logger.debug("Browser started (headless=%s)", self._config.headless)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._stack is None:
            return
        await self._close_context()
        await self._stack.aclose()
        self._stack = None
        self._browser = None
        logger.debug("Browser stopped")

    @property
    def is_started(self) -> bool:
        return self._stack is not None

    @property
    def request_count(self) -> int:
        """Requests served by the current context."""
        return self._request_count

    async def _close_context(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        self._request_count = 0

    async def _current_context(self) -> BrowserContext:
        if self._browser is None:
            raise RuntimeError("BrowserManager not started. Use 'async with' context.")

        if self._context is not None and self._request_count >= self._config.rotation_threshold:
            logger.debug("Rotating browser context after %d requests", self._request_count)
            await self._close_context()

        if self._context is None:
            self._context = await self._browser.new_context(
                viewport={
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                locale=self._config.locale,
                timezone_id=self._config.timezone_id,
                user_agent=random.choice(self._config.user_agents),
            )
        return self._context

    @asynccontextmanager
    async def _page(self) -> AsyncIterator[Page]:
        """Lease a page from the current context; counts one request."""
        context = await self._current_context()
        page = await context.new_page()
        try:
            yield page
        finally:
            await page.close()
            self._request_count += 1

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout_ms: int = 45000,
    ) -> FetchResponse:
        """Navigate to ``url`` and return the status and rendered HTML.

        Args:
            url: URL to fetch.
            headers: Extra request headers.
            timeout_ms: Navigation timeout in milliseconds.

        Returns:
            FetchResponse; ``status`` is 0 when navigation produced no response.

        Raises:
            FetchError: On navigation timeout or browser-level failure.
        """
        async with self._page() as page:
            try:
                if headers:
                    await page.set_extra_http_headers(headers)
                response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                body = await page.content()
            except PlaywrightTimeoutError as e:
                raise FetchError(FetchErrorKind.TIMEOUT, url, str(e)) from e
            except PlaywrightError as e:
                raise FetchError(FetchErrorKind.OTHER, url, str(e)) from e

        status = response.status if response is not None else 0
        logger.debug("GET %s -> %d", url, status)
        return FetchResponse(url=url, status=status, body=body)
