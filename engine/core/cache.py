"""Bounded in-memory cache service with TTL eviction.

Constructed explicitly and passed to the components that need it; its lifecycle
is tied to process start/stop through ``startup()`` and ``shutdown()``.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Callable, Tuple

from core.config import Settings
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)


class CacheService:
    """Async LRU cache with per-entry expiry.

    Entries are evicted when they expire or when the cache grows past
    ``max_entries`` (least recently used first).
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.max_entries = settings.cache_max_entries
        self.default_ttl = settings.cache_ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._running = False

    async def startup(self):
        """Mark the cache as running."""
        self._running = True
        logger.info("Using in-memory cache",
                    max_entries=self.max_entries,
                    ttl_seconds=self.default_ttl)

    async def shutdown(self):
        """Drop every entry and stop accepting writes."""
        await self.clear()
        self._running = False
        logger.info("Cache shutdown", hits=self._hits, misses=self._misses)

    @property
    def running(self) -> bool:
        return self._running

    async def get(self, key: str, default: Any = None) -> Any:
        """Get a value, refreshing its recency. Expired entries count as misses."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                log_cache_operation(logger, "get", key, hit=False)
                return default

            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                log_cache_operation(logger, "get", key, hit=False, expired=True)
                return default

            self._entries.move_to_end(key)
            self._hits += 1
            log_cache_operation(logger, "get", key, hit=True)
            return value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Store a value. Returns False when the cache is not running."""
        if not self._running:
            return False
        lifetime = self.default_ttl if ttl is None else ttl
        async with self._lock:
            self._entries[key] = (self._clock() + lifetime, value)
            self._entries.move_to_end(key)
            self._evict()
        log_cache_operation(logger, "set", key, ttl=lifetime)
        return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            log_cache_operation(logger, "evict", key)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "running": self._running,
        }
