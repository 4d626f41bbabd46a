"""
TTL result cache.

Stores the finalized results of a query under a key derived from the
normalized keyword and the options that change the result set.

Invalidation is deliberately coarse:
- get() treats entries at or past their ttl as misses (and evicts them)
- a background task clears the whole cache every clear_interval seconds

Usage:
    cache = ResultCache(ttl=3600)
    key = generate_cache_key("movie", ["site_a"], SearchOptions())
    cache.store(key, results)
    hit = cache.get(key)  # list[ResourceResult] or None
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from panlink.utils.config import CacheConfig, get_settings
from panlink.utils.logging import get_logger
from panlink.utils.schemas import ResourceResult, SearchOptions

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """One cached result set."""

    key: str
    results: tuple[ResourceResult, ...]
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


def generate_cache_key(
    keyword: str,
    sources: Iterable[str],
    options: SearchOptions | None = None,
) -> str:
    """Build the cache key of a query.

    Keyword case and surrounding whitespace do not matter, nor does the order
    of sources or provider toggles.

    Args:
        keyword: Search keyword.
        sources: Names of the sources the query runs against.
        options: Query options.

    Returns:
        Hex md5 digest.
    """
    options = options or SearchOptions()
    normalized = " ".join(keyword.lower().split())
    enabled = (
        "all"
        if options.enabled_providers is None
        else ",".join(sorted(p.value for p in options.enabled_providers))
    )
    parts = [
        "search",
        normalized,
        ",".join(sorted(set(sources))),
        f"pages={options.pages or 0}",
        f"enabled={enabled}",
        "disabled=" + ",".join(sorted(p.value for p in options.disabled_providers)),
        f"filter={options.filter_by_keyword}",
        f"limit={options.limit or 0}",
    ]
    return hashlib.md5(":".join(parts).encode("utf-8")).hexdigest()


class ResultCache:
    """Thread-safe TTL cache of query results."""

    def __init__(
        self,
        ttl: float | None = None,
        clear_interval: float | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache.

        Args:
            ttl: Entry time-to-live in seconds (default: settings.cache).
            clear_interval: Seconds between wholesale clears (default: settings.cache).
            clock: Time source in seconds.
        """
        config: CacheConfig = get_settings().cache
        self.ttl = ttl if ttl is not None else config.ttl_seconds
        self.clear_interval = (
            clear_interval if clear_interval is not None else config.clear_interval_seconds
        )
        if self.ttl <= 0:
            raise ValueError("ttl must be positive")
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._clears = 0
        self._running = False
        self._task: asyncio.Task[None] | None = None

    def get(self, key: str) -> list[ResourceResult] | None:
        """Return cached results, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return list(entry.results)

    def store(self, key: str, results: Iterable[ResourceResult]) -> None:
        """Store results under key, overwriting any previous entry."""
        entry = CacheEntry(
            key=key,
            results=tuple(results),
            timestamp=self._clock(),
            ttl=self.ttl,
        )
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._clears += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def _clear_loop(self) -> None:
        """Background wholesale-clear loop."""
        while self._running:
            try:
                await asyncio.sleep(self.clear_interval)
                removed = self.clear()
                logger.info("Result cache cleared", removed=removed)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Result cache clear error", error=str(e))

    async def start(self) -> None:
        """Start the periodic clear task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._clear_loop())
        logger.debug("Result cache cleaner started", interval=self.clear_interval)

    async def stop(self) -> None:
        """Stop the periodic clear task."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "clears": self._clears,
                "ttl": self.ttl,
            }


# Global cache instance
_result_cache: ResultCache | None = None


def get_result_cache() -> ResultCache:
    """Get the process-wide result cache."""
    global _result_cache
    if _result_cache is None:
        _result_cache = ResultCache()
    return _result_cache


def reset_result_cache() -> None:
    """Reset the global result cache (for testing)."""
    global _result_cache
    _result_cache = None
