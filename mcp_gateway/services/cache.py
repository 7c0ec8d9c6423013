"""
Identity Cache - Read-through TTL cache for authenticated principals.

The cache is derived and expendable: entries are keyed by API key
fingerprint, never by the raw key, and expire by TTL only. A revoked key or
changed plan may therefore stay valid in-cache for up to one TTL window.

The TTLCache interface lets a distributed cache replace the in-process one
when several gateway instances run side by side.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from itertools import islice
from typing import Generic, TypeVar

from mcp_gateway.config import settings

V = TypeVar("V")


class TTLCache(ABC, Generic[V]):
    """get / set / invalidate contract for identity caches."""

    @abstractmethod
    async def get(self, key: str) -> V | None:
        """Return the cached value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        """Store a value for ttl_seconds (default TTL when None)."""

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        """Drop a single entry."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""


class InMemoryTTLCache(TTLCache[V]):
    """
    Process-local TTL cache.

    Usage:
        cache: InMemoryTTLCache[Principal] = InMemoryTTLCache(ttl_seconds=300)
        await cache.set("api_key:<hash>", principal)
        principal = await cache.get("api_key:<hash>")
    """

    _MAX_SIZE = 10000

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # key -> (value, expires_at)
        self._entries: dict[str, tuple[V, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        # Re-setting a key moves it to the newest position
        self._entries.pop(key, None)
        self._cleanup()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + ttl)

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def _cleanup(self) -> None:
        """Make room for one entry: drop expired ones, then the oldest writes."""
        if len(self._entries) < self._MAX_SIZE:
            return
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
        for k in expired:
            del self._entries[k]

        overflow = len(self._entries) - self._MAX_SIZE + 1
        if overflow > 0:
            # dict order is write order
            for k in list(islice(self._entries, overflow)):
                del self._entries[k]


# Shared across all requests in this process
identity_cache: InMemoryTTLCache = InMemoryTTLCache(ttl_seconds=settings.identity_cache_ttl_seconds)
