"""Bounded in-memory TTL cache.

Instances are created and owned by whichever service needs them; there is
no module-level cache.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class TTLEntry:
    value: Any
    expires_at: float


class TTLCache:
    """TTL cache with a size bound and an injectable clock.

    Entries expire ``ttl_seconds`` after they were set. When the cache is
    full, expired entries are purged first, then the oldest entry is evicted.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, TTLEntry] = {}
        self._default_ttl = default_ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        """Get value if it exists and has not expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._cleanup_expired_unsafe()
                if len(self._entries) >= self._max_size:
                    oldest = next(iter(self._entries))
                    del self._entries[oldest]

            ttl_seconds = self._default_ttl if ttl is None else ttl
            self._entries[key] = TTLEntry(value=value, expires_at=self._clock() + ttl_seconds)

    async def ttl_remaining(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None if absent."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry.expires_at - self._clock()
            return remaining if remaining > 0 else None

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def cleanup_expired(self) -> int:
        """Remove all expired entries and return how many were removed."""
        async with self._lock:
            return self._cleanup_expired_unsafe()

    def _cleanup_expired_unsafe(self) -> int:
        # Caller holds the lock
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def size(self) -> int:
        async with self._lock:
            return len(self._entries)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
