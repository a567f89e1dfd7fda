"""Interval-based rate limiting with jitter, keyed by provider or queue, and retry backoff."""

import asyncio
import logging
import random
import time
from collections import defaultdict

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter per key with optional jitter."""

    def __init__(self):
        self.locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_request: dict[str, float] = {}

    async def acquire_with_interval(
        self,
        key: str,
        min_interval: float,
        max_interval: float | None = None,
        jitter: float = 0.0,
    ) -> float:
        """
        Wait until at least ``min_interval`` seconds have passed since the last
        acquire for ``key``.

        Args:
            key: Rate limit bucket (provider code, queue name)
            min_interval: Minimum seconds between requests
            max_interval: Maximum seconds between requests (defaults to min_interval)
            jitter: Random jitter range in seconds (+/-)

        Returns:
            Seconds spent waiting
        """
        if max_interval is None:
            max_interval = min_interval

        async with self.locks[key]:
            start = time.monotonic()
            elapsed = start - self.last_request.get(key, 0.0)

            interval = random.uniform(min_interval, max_interval)
            if jitter > 0:
                interval = max(min_interval, interval + random.uniform(-jitter, jitter))

            wait_needed = max(0.0, interval - elapsed)
            if wait_needed > 0:
                logger.debug(f"Rate limiting {key}: waiting {wait_needed:.2f}s")
                await asyncio.sleep(wait_needed)

            self.last_request[key] = time.monotonic()
            return self.last_request[key] - start

    async def wait_for_backoff(
        self,
        attempt: int,
        base_seconds: float = 1.0,
        multiplier: float = 2.0,
        max_seconds: float = 60.0,
    ) -> float:
        """
        Wait with exponential backoff after a failed attempt.

        Args:
            attempt: Attempt number (1-based)
            base_seconds: Wait for the first attempt
            multiplier: Backoff multiplier
            max_seconds: Maximum backoff time in seconds

        Returns:
            Seconds waited
        """
        wait_time = min(base_seconds * multiplier ** (attempt - 1), max_seconds)
        await asyncio.sleep(wait_time)
        return wait_time


rate_limiter = RateLimiter()
