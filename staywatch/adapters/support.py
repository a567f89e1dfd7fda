"""Shared search and offers plumbing composed into every provider adapter."""

import logging
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin

from playwright.async_api import Page

from staywatch.adapters.base import Offer, RawCandidate, SearchStats
from staywatch.adapters.fetching import PageFetcher
from staywatch.adapters.robots import RobotsChecker
from staywatch.config import settings
from staywatch.errors import ProviderBlockedError, ProviderDisabledError, StaywatchError

logger = logging.getLogger(__name__)


class ProviderSupport:
    """Enable flags, robots check and throttled retrieval for one provider."""

    def __init__(self, code: str, base_url: str, fetcher: Optional[PageFetcher] = None):
        self.code = code
        self.base_url = base_url.rstrip("/")
        self.fetcher = fetcher or PageFetcher(code)
        self.robots = RobotsChecker(self.fetcher.get_client, settings.user_agent)

    def is_enabled(self) -> bool:
        """Global scraping switch and the provider's own switch."""
        return settings.scraping_enabled and settings.is_provider_enabled(self.code)

    def absolute_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return urljoin(self.base_url + "/", href)

    async def check_robots(self, url: str, automated: bool, stats: SearchStats) -> None:
        """
        Soft robots.txt check.

        Disallowed paths are logged; only automated runs with strict
        enforcement switched on are blocked.
        """
        enforce = automated and settings.robots_enforce_strict
        allowed = await self.robots.check(self.code, url, enforce=enforce)
        stats.robots_allowed = allowed
        if not allowed and enforce:
            raise ProviderBlockedError(f"Path disallowed by robots.txt: {url}", url=url)

    async def search_page(
        self,
        url: str,
        parse: Callable[[str], list[RawCandidate]],
        automated: bool = True,
        stats: Optional[SearchStats] = None,
        browser_first: bool = False,
        wait_selector: Optional[str] = None,
        page_action: Optional[Callable[[Page], Awaitable[None]]] = None,
    ) -> list[RawCandidate]:
        """Run one search page through the robots check and retrieval policy."""
        if not self.is_enabled():
            raise ProviderDisabledError(self.code)
        stats = stats if stats is not None else SearchStats()
        await self.check_robots(url, automated, stats)
        logger.info(f"Searching {self.code}: {url}")
        results = await self.fetcher.retrieve(
            url,
            parse,
            stats=stats,
            browser_first=browser_first,
            wait_selector=wait_selector,
            page_action=page_action,
        )
        logger.info(f"Parsed {len(results)} candidates from {self.code}")
        return results

    async def offers_page(
        self,
        url: str,
        parse: Callable[[str], list[Offer]],
        browser_first: bool = False,
    ) -> list[Offer]:
        """Fetch offers; any failure is logged and yields no offers."""
        if not self.is_enabled():
            return []
        try:
            await self.check_robots(url, automated=True, stats=SearchStats())
            return await self.fetcher.retrieve(url, parse, browser_first=browser_first)
        except StaywatchError as e:
            logger.warning(f"Failed to fetch {self.code} offers: {e}")
            return []

    async def cleanup(self) -> None:
        await self.fetcher.close()
