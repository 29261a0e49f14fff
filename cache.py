"""
Catalog cache with TTL expiry.
Memoizes schema introspection and compiled metadata.
"""

import asyncio
import logging
import time
import threading
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

SCHEMA_KEY = "schema_analysis"
METADATA_KEY = "metadata"


class CatalogCache:
    """Thread-safe TTL cache. Replacement of a key is last-writer-wins."""

    def __init__(self, default_ttl: int = 3600, clock: Callable[[], float] = time.monotonic):
        self._cache: dict = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        # One computation per key at a time, others wait for its result
        self._compute_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _live(self, entry: dict) -> bool:
        return self._clock() - entry['ts'] < entry['ttl']

    def get(self, key: str):
        """Get cached value if not expired. Returns None on miss."""
        with self._lock:
            entry = self._cache.get(key)
            if entry and self._live(entry):
                return entry['value']
            if entry:
                del self._cache[key]
            return None

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            return bool(entry and self._live(entry))

    def set(self, key: str, value, ttl: Optional[int] = None):
        """Cache a value with optional custom TTL."""
        with self._lock:
            self._cache[key] = {
                'value': value,
                'ts': self._clock(),
                'ttl': ttl or self._default_ttl
            }

    async def remember(self, key: str, ttl: Optional[int], compute: Callable[[], Awaitable[Any]]):
        """
        Return the cached value for key, computing and storing it on a miss.

        Concurrent misses on the same key wait for the first computation
        instead of recomputing.
        """
        value = self.get(key)
        if value is not None:
            return value

        async with self._compute_locks[key]:
            value = self.get(key)
            if value is not None:
                return value
            logger.debug(f"Cache miss for '{key}', computing")
            value = await compute()
            self.set(key, value, ttl)
            return value

    def invalidate(self, key: str) -> bool:
        """Remove a specific cache entry. Returns True if a live entry was removed."""
        with self._lock:
            entry = self._cache.pop(key, None)
            return bool(entry and self._live(entry))

    def clear(self, keys: Optional[Iterable[str]] = None) -> int:
        """Remove the named entries (or everything). Returns the number of live entries removed."""
        with self._lock:
            targets = list(self._cache) if keys is None else [k for k in keys if k in self._cache]
            cleared = 0
            for k in targets:
                if self._live(self._cache.pop(k)):
                    cleared += 1
            return cleared

    def stats(self) -> dict:
        """Return cache statistics."""
        with self._lock:
            total = len(self._cache)
            active = sum(1 for e in self._cache.values() if self._live(e))
            return {'total_entries': total, 'active_entries': active, 'expired': total - active}
