"""In-memory freshness cache with stale-while-revalidate reads."""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from chainfolio.constants.handler import BALANCE_CACHE_MAX_ITEMS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached value and the clock time it was stored at."""

    data: T
    timestamp: float


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """Result of a cache read."""

    data: T | None
    is_stale: bool = False

    @property
    def hit(self) -> bool:
        return self.data is not None


class FreshnessCache(Generic[T]):
    """TTL cache that distinguishes fresh, stale and expired entries.

    Entries younger than ``ttl_seconds`` are fresh. Entries older than that
    but younger than ``ttl_seconds + stale_window_seconds`` are returned with
    ``is_stale=True``. Older entries read as a miss but are kept, so
    ``get_last_known`` can still serve them when a refresh fails.
    """

    def __init__(
        self,
        ttl_seconds: float,
        stale_window_seconds: float = 0.0,
        max_items: int = BALANCE_CACHE_MAX_ITEMS,
        namespace: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Age below which an entry is fresh.
            stale_window_seconds: Extra age during which an entry is stale.
            max_items: Maximum entries, least recently used evicted first.
            namespace: Label used in logs and stats.
            clock: Monotonic time source, injectable for tests.
        """
        self.ttl_seconds = ttl_seconds
        self.stale_window_seconds = stale_window_seconds
        self.max_items = max_items
        self.namespace = namespace
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    def get(self, key: str) -> CacheLookup[T]:
        """Read an entry, classifying it by age.

        Args:
            key: Cache key.

        Returns:
            CacheLookup with data and staleness; data is None on a miss or
            when the entry is past the stale window.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return CacheLookup(data=None)

        age = self._clock() - entry.timestamp
        if age < self.ttl_seconds:
            self._entries.move_to_end(key)
            self._hits += 1
            return CacheLookup(data=entry.data)

        if age < self.ttl_seconds + self.stale_window_seconds:
            self._entries.move_to_end(key)
            self._stale_hits += 1
            return CacheLookup(data=entry.data, is_stale=True)

        # Expired: keep entry for last-known fallback
        self._misses += 1
        logger.debug("cache_entry_expired", namespace=self.namespace, key=key, age=round(age, 3))
        return CacheLookup(data=None)

    def get_last_known(self, key: str) -> T | None:
        """Get an entry regardless of age.

        Used as the fallback when every refresh attempt has failed.

        Args:
            key: Cache key.

        Returns:
            The last stored value, or None if the key was never set.
        """
        entry = self._entries.get(key)
        return None if entry is None else entry.data

    def set(self, key: str, value: T) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_items > 0:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_entry_evicted", namespace=self.namespace, key=evicted)
        self._entries[key] = CacheEntry(data=value, timestamp=self._clock())

    def invalidate(self, key: str) -> None:
        """Remove one entry."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear entire cache."""
        self._entries.clear()
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            dict with cache stats
        """
        total = self._hits + self._stale_hits + self._misses
        hit_rate = (self._hits + self._stale_hits) / total if total > 0 else 0.0

        return {
            "namespace": self.namespace,
            "size": len(self._entries),
            "max_items": self.max_items,
            "ttl_seconds": self.ttl_seconds,
            "stale_window_seconds": self.stale_window_seconds,
            "hits": self._hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 4),
        }
