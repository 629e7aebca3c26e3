"""Page fetchers: plain httpx client and a headless Chromium fallback."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from jobs_etl_core.constants import RETRYABLE_STATUS_CODES
from jobs_etl_core.exceptions import FetchError, TransientFetchError

logger = structlog.get_logger()


class HttpxPageFetcher:
    """Owns one pooled AsyncClient for the lifetime of a spider."""

    def __init__(
        self,
        user_agent: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with request headers and timeout; a client may be injected."""
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml",
                "Accept-Language": "en-AU,en;q=0.8",
            },
        )
        self._closed = False

    async def fetch(self, url: str) -> str:
        """GET a page, classifying failures as transient or permanent."""
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            msg = f"Timed out fetching {url}"
            raise TransientFetchError(msg) from e
        except httpx.TransportError as e:
            msg = f"Transport error fetching {url}: {e}"
            raise TransientFetchError(msg) from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            msg = f"HTTP {response.status_code} from {url}"
            raise TransientFetchError(msg)
        if response.status_code >= 400:
            msg = f"HTTP {response.status_code} from {url}"
            raise FetchError(msg)
        return response.text

    async def close(self) -> None:
        """Close the client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()


class PlaywrightPageFetcher:
    """Renders pages in headless Chromium; the browser starts on first fetch."""

    def __init__(self, user_agent: str, timeout: float = 30.0) -> None:
        """Initialize with the user agent and navigation timeout."""
        self._user_agent = user_agent
        self._timeout_ms = int(timeout * 1000)
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._launch_lock = asyncio.Lock()
        self._closed = False

    async def _ensure_context(self) -> Any:  # noqa: ANN401
        async with self._launch_lock:
            if self._context is None:
                self._playwright, self._browser, self._context = await self._launch()
                logger.debug("browser_launched")
        return self._context

    async def _launch(self) -> tuple[Any, Any, Any]:
        from playwright.async_api import async_playwright

        playwright = await async_playwright().start()
        browser = await playwright.chromium.launch(headless=True)
        context = await browser.new_context(user_agent=self._user_agent)
        return playwright, browser, context

    async def fetch(self, url: str) -> str:
        """Navigate to a page and return its rendered HTML."""
        from playwright.async_api import Error as PlaywrightError

        context = await self._ensure_context()
        page = await context.new_page()
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)
            status = response.status if response is not None else 200
            if status in RETRYABLE_STATUS_CODES:
                msg = f"HTTP {status} from {url}"
                raise TransientFetchError(msg)
            if status >= 400:
                msg = f"HTTP {status} from {url}"
                raise FetchError(msg)
            return str(await page.content())
        except PlaywrightError as e:
            msg = f"Browser error fetching {url}: {e}"
            raise TransientFetchError(msg) from e
        finally:
            await page.close()

    async def close(self) -> None:
        """Shut the browser down. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
