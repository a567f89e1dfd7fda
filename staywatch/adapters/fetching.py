"""HTTP and headless-browser page retrieval shared by provider adapters."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from staywatch import metrics
from staywatch.adapters.base import SearchStats
from staywatch.config import settings
from staywatch.errors import (
    ProviderBlockedError,
    ProviderFetchError,
    ProviderParseError,
    ProviderTimeoutError,
)
from staywatch.rate_limiter import RateLimiter, rate_limiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

BLOCKED_STATUSES = (403, 429)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

# Body text that means the provider served a bot challenge instead of results
CHALLENGE_INDICATORS = [
    "verify you are a human",
    "access denied",
    "request unsuccessful. incapsula",
    "attention required! | cloudflare",
]


@dataclass
class BrowserResult:
    """Rendered page plus any JSON API payloads captured while it loaded."""

    html: str
    json_payloads: list[Any] = field(default_factory=list)
    status: Optional[int] = None


class PageFetcher:
    """
    Retrieves provider pages for a single adapter.

    Owns one httpx client and one lazily launched browser, both reused for the
    adapter's lifetime and released by ``close()``. Requests are throttled by a
    fixed delay and a concurrency cap.
    """

    def __init__(
        self,
        provider_code: str,
        limiter: Optional[RateLimiter] = None,
        delay_ms: Optional[int] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.provider_code = provider_code
        self.limiter = limiter or rate_limiter
        self.delay_seconds = (
            delay_ms if delay_ms is not None else settings.provider_request_delay_ms
        ) / 1000.0
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.provider_max_concurrent)
        self._client: Optional[httpx.AsyncClient] = None
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._init_lock = asyncio.Lock()

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": settings.accept_language,
        }

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
                headers=self.headers,
            )
        return self._client

    async def _ensure_browser(self) -> Browser:
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            if self._browser is None:
                logger.info(f"Launching headless browser for {self.provider_code}")
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=BROWSER_ARGS,
                )
            return self._browser

    async def _throttle(self, stats: Optional[SearchStats]) -> None:
        waited = await self.limiter.acquire_with_interval(
            f"provider:{self.provider_code}", self.delay_seconds
        )
        if stats is not None and waited > 0.05:
            stats.rate_limited = True

    async def fetch_html(self, url: str, stats: Optional[SearchStats] = None) -> str:
        """
        Fetch a page over plain HTTP.

        Raises:
            ProviderTimeoutError: Request timed out
            ProviderBlockedError: HTTP 403/429 or a bot challenge page
            ProviderFetchError: Any other transport failure or non-2xx status
        """
        async with self._semaphore:
            await self._throttle(stats)
            client = await self.get_client()
            start = time.perf_counter()
            status = "error"
            try:
                response = await client.get(url)
                if response.status_code in BLOCKED_STATUSES:
                    status = "blocked"
                    raise ProviderBlockedError(
                        f"HTTP {response.status_code} from {self.provider_code}",
                        url=url,
                        http_status=response.status_code,
                    )
                if response.status_code >= 400:
                    raise ProviderFetchError(
                        f"HTTP {response.status_code} from {self.provider_code}",
                        url=url,
                        http_status=response.status_code,
                    )
                html = response.text
                self._check_challenge(html, url, response.status_code)
                status = "ok"
                return html
            except httpx.TimeoutException as e:
                status = "timeout"
                raise ProviderTimeoutError(f"Timeout fetching {url}: {e}", url=url) from e
            except httpx.HTTPError as e:
                raise ProviderFetchError(f"HTTP fetch failed for {url}: {e}", url=url) from e
            finally:
                elapsed = time.perf_counter() - start
                if stats is not None:
                    stats.fetch_ms += int(elapsed * 1000)
                metrics.provider_fetches_total.labels(
                    provider=self.provider_code, mode="http", status=status
                ).inc()
                metrics.provider_fetch_duration_seconds.labels(
                    provider=self.provider_code, mode="http"
                ).observe(elapsed)

    async def fetch_html_with_browser(
        self,
        url: str,
        stats: Optional[SearchStats] = None,
        wait_selector: Optional[str] = None,
        capture_json: Optional[Callable[[str, Any], bool]] = None,
        json_wait_ms: int = 10000,
        page_action: Optional[Callable[[Page], Awaitable[None]]] = None,
    ) -> BrowserResult:
        """
        Render a page in the headless browser.

        Args:
            url: Page URL
            stats: Search stats to update
            wait_selector: Selector to wait for after load (soft, times out quietly)
            capture_json: Predicate ``(response_url, payload)`` selecting JSON API
                responses to keep
            json_wait_ms: How long to wait for a captured payload after load
            page_action: Coroutine run against the page after load, e.g. to fill a form

        Returns:
            BrowserResult with rendered HTML and captured JSON payloads

        Raises:
            ProviderFetchError: Browser disabled, navigation failed or non-2xx status
            ProviderTimeoutError: Navigation timed out
            ProviderBlockedError: HTTP 403/429 or a bot challenge page
        """
        if not settings.playwright_enabled:
            raise ProviderFetchError("Playwright is disabled", url=url)

        async with self._semaphore:
            await self._throttle(stats)
            if stats is not None:
                stats.playwright_used = True
            browser = await self._ensure_browser()
            context = await browser.new_context(
                user_agent=settings.user_agent,
                locale="en-GB",
                viewport={"width": 1920, "height": 1080},
                extra_http_headers={"Accept-Language": settings.accept_language},
            )
            page = await context.new_page()
            payloads: list[Any] = []
            start = time.perf_counter()
            status = "error"

            if capture_json is not None:
                async def _on_response(response):
                    content_type = response.headers.get("content-type", "")
                    if "json" not in content_type:
                        return
                    try:
                        payload = await response.json()
                    except PlaywrightError:
                        return
                    except ValueError:
                        return
                    if capture_json(response.url, payload):
                        payloads.append(payload)

                page.on("response", _on_response)

            try:
                response = await page.goto(
                    url, wait_until="networkidle", timeout=settings.browser_timeout_ms
                )
                http_status = response.status if response else None
                if http_status in BLOCKED_STATUSES:
                    status = "blocked"
                    raise ProviderBlockedError(
                        f"HTTP {http_status} from {self.provider_code} (browser)",
                        url=url,
                        http_status=http_status,
                    )
                if http_status is not None and http_status >= 400:
                    raise ProviderFetchError(
                        f"HTTP {http_status} from {self.provider_code} (browser)",
                        url=url,
                        http_status=http_status,
                    )

                if page_action is not None:
                    await page_action(page)

                if wait_selector:
                    try:
                        await page.wait_for_selector(wait_selector, timeout=5000)
                    except PlaywrightTimeoutError:
                        logger.debug(f"Selector {wait_selector} not found on {url}")

                if capture_json is not None:
                    waited = 0
                    while not payloads and waited < json_wait_ms:
                        await page.wait_for_timeout(500)
                        waited += 500

                html = await page.content()
                self._check_challenge(html, url, http_status)
                status = "ok"
                return BrowserResult(html=html, json_payloads=payloads, status=http_status)
            except PlaywrightTimeoutError as e:
                status = "timeout"
                raise ProviderTimeoutError(f"Browser timeout loading {url}", url=url) from e
            except PlaywrightError as e:
                raise ProviderFetchError(f"Browser fetch failed for {url}: {e}", url=url) from e
            finally:
                elapsed = time.perf_counter() - start
                if stats is not None:
                    stats.fetch_ms += int(elapsed * 1000)
                metrics.provider_fetches_total.labels(
                    provider=self.provider_code, mode="browser", status=status
                ).inc()
                metrics.provider_fetch_duration_seconds.labels(
                    provider=self.provider_code, mode="browser"
                ).observe(elapsed)
                await page.close()
                await context.close()

    async def retrieve(
        self,
        url: str,
        parse: Callable[[str], list[T]],
        stats: Optional[SearchStats] = None,
        browser_first: bool = False,
        wait_selector: Optional[str] = None,
        page_action: Optional[Callable[[Page], Awaitable[None]]] = None,
    ) -> list[T]:
        """
        Fetch and parse a page, falling back from HTTP to the browser.

        The browser is tried when the HTTP fetch fails or parses to nothing.
        ``browser_first`` skips HTTP for providers that render client-side.
        """
        last_error: Optional[ProviderFetchError] = None

        if not browser_first or not settings.playwright_enabled:
            try:
                html = await self.fetch_html(url, stats)
                results = self._parse(parse, html, url, stats)
                if results or not settings.playwright_enabled:
                    return results
                logger.info(f"HTTP fetch of {url} parsed no results, trying browser")
            except ProviderFetchError as e:
                if not settings.playwright_enabled:
                    raise
                logger.info(f"HTTP fetch failed for {self.provider_code}, trying browser: {e}")
                last_error = e

        try:
            rendered = await self.fetch_html_with_browser(
                url, stats, wait_selector=wait_selector, page_action=page_action
            )
        except ProviderFetchError:
            if last_error is not None and isinstance(last_error, ProviderBlockedError):
                raise last_error
            raise
        return self._parse(parse, rendered.html, url, stats)

    @staticmethod
    def _parse(
        parse: Callable[[str], list[T]],
        html: str,
        url: str,
        stats: Optional[SearchStats],
    ) -> list[T]:
        start = time.perf_counter()
        try:
            return parse(html)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise ProviderParseError(f"Failed to parse {url}: {e}", url=url) from e
        finally:
            if stats is not None:
                stats.parse_ms += int((time.perf_counter() - start) * 1000)

    def _check_challenge(self, html: str, url: str, http_status: Optional[int]) -> None:
        head = html[:5000].lower()
        for indicator in CHALLENGE_INDICATORS:
            if indicator in head:
                raise ProviderBlockedError(
                    f"Bot challenge detected on {self.provider_code}: {indicator}",
                    url=url,
                    http_status=http_status,
                )

    async def close(self):
        """Release the HTTP client and browser."""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.error(f"Error closing browser for {self.provider_code}: {e}")
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
