"""Soft robots.txt advisory check for provider adapters."""

import logging
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import httpx

from staywatch import metrics

logger = logging.getLogger(__name__)


class RobotsChecker:
    """
    Caches robots.txt rules per origin.

    An unreachable or missing robots.txt counts as allow-all.
    """

    def __init__(self, client_factory, user_agent: str, timeout_seconds: float = 10.0):
        """
        Args:
            client_factory: Async callable returning the adapter's httpx.AsyncClient
            user_agent: User agent to evaluate rules for
            timeout_seconds: robots.txt request timeout
        """
        self._client_factory = client_factory
        self._user_agent = user_agent
        self._timeout_seconds = timeout_seconds
        self._cache: dict[str, RobotFileParser] = {}

    async def is_allowed(self, url: str) -> bool:
        """Return whether ``url`` is allowed for our user agent."""
        parser = await self._get_parser(url)
        return parser.can_fetch(self._user_agent, url)

    async def check(self, provider_code: str, url: str, enforce: bool) -> bool:
        """
        Log a disallowed path and report it.

        Args:
            provider_code: Provider for logging and metrics
            url: URL about to be fetched
            enforce: Whether the caller will block on a disallow

        Returns:
            True if robots.txt allows the URL
        """
        allowed = await self.is_allowed(url)
        if not allowed:
            metrics.robots_disallowed_total.labels(
                provider=provider_code, enforced=str(enforce).lower()
            ).inc()
            logger.warning(
                f"robots.txt disallows {urlparse(url).path} for {provider_code}"
                f"{' (enforced)' if enforce else ' (advisory only, continuing)'}"
            )
        return allowed

    async def _get_parser(self, url: str) -> RobotFileParser:
        origin = self._origin(url)
        cached = self._cache.get(origin)
        if cached is not None:
            return cached

        parser = RobotFileParser()
        robots_url = urljoin(origin, "/robots.txt")
        try:
            client = await self._client_factory()
            response = await client.get(robots_url, timeout=self._timeout_seconds)
            if response.status_code == 200 and response.text:
                parser.set_url(robots_url)
                parser.parse(response.text.splitlines())
                logger.debug(f"Loaded robots.txt for {origin}")
            else:
                parser.parse(["User-agent: *", "Allow: /"])
                logger.info(f"robots.txt unavailable for {origin} (HTTP {response.status_code}), allowing")
        except httpx.HTTPError as e:
            parser.parse(["User-agent: *", "Allow: /"])
            logger.warning(f"robots.txt fetch failed for {origin}, allowing: {e}")

        self._cache[origin] = parser
        return parser

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        scheme = parsed.scheme or "https"
        return f"{scheme}://{parsed.netloc}"
