"""
Per-user fixed-window rate limiting backed by ``TTLCache``.

Each user gets a counter that expires one window after the first request
in that window.
"""

import logging
import math
from typing import Optional

from terragon_sandbox.core.cache import TTLCache

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when a user has used up the current window."""

    def __init__(self, message: str, retry_after_seconds: float):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RateLimiter:
    def __init__(self, limit: int, window_seconds: float = 3600.0, cache: Optional[TTLCache] = None):
        self.limit = limit
        self.window_seconds = window_seconds
        self.cache = cache or TTLCache(default_ttl_seconds=window_seconds, max_size=10000)

    async def check(self, key: str) -> None:
        """
        Count one request for ``key``.

        Raises:
            RateLimitExceeded: If ``key`` already made ``limit`` requests
                in the current window
        """
        count = await self.cache.get(key)
        if count is None:
            await self.cache.set(key, 1, ttl=self.window_seconds)
            return

        remaining = await self.cache.ttl_remaining(key)
        if remaining is None:
            # Window expired between the two reads
            await self.cache.set(key, 1, ttl=self.window_seconds)
            return

        if count >= self.limit:
            minutes = max(1, math.ceil(remaining / 60))
            logger.info(f"Rate limit hit for {key} ({count}/{self.limit})")
            raise RateLimitExceeded(
                f"Rate limit exceeded. Try again in {minutes} minute{'s' if minutes != 1 else ''}.",
                retry_after_seconds=remaining,
            )

        await self.cache.set(key, count + 1, ttl=remaining)
