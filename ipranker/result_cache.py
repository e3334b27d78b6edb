"""
Result Cache
============

Time-to-live key-value layer for computed rankings. Values are JSON strings
so any external KV backend can implement the same interface.

get returns None on a miss; callers recompute. The in-memory cache also
remembers expired values so readers can fall back to the last known ranking
when the state store cannot be reached.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def ranking_cache_key(partition: str) -> str:
    return f"top:{partition}"


class ResultCache:
    """Interface for a TTL cache"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def put_with_ttl(self, key: str, value: str, ttl_seconds: float) -> None:
        raise NotImplementedError

    async def get_stale(self, key: str) -> Optional[str]:
        """Last value stored under key even if expired. Backends without history return None."""
        return None


@dataclass
class CacheEntry:
    value: str
    expires_at: float
    stored_at: float


class MemoryResultCache(ResultCache):
    """Process-local TTL cache"""

    def __init__(self, clock=time.monotonic, max_entries: int = 10000):
        self.clock = clock
        self.max_entries = max_entries
        self.entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Optional[str]:
        entry = self.entries.get(key)
        if entry is None or entry.expires_at <= self.clock():
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    async def put_with_ttl(self, key: str, value: str, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        current_time = self.clock()
        if key not in self.entries and len(self.entries) >= self.max_entries:
            self._evict_oldest()

        self.entries[key] = CacheEntry(
            value=value,
            expires_at=current_time + ttl_seconds,
            stored_at=current_time,
        )

    async def get_stale(self, key: str) -> Optional[str]:
        entry = self.entries.get(key)
        return entry.value if entry else None

    def _evict_oldest(self):
        oldest_key = min(self.entries, key=lambda k: self.entries[k].stored_at)
        del self.entries[oldest_key]
        logger.debug(f"Result cache full, evicted {oldest_key}")

    def get_stats(self) -> dict:
        current_time = self.clock()
        live = sum(1 for e in self.entries.values() if e.expires_at > current_time)
        return {
            'entries': len(self.entries),
            'live_entries': live,
            'hits': self.hits,
            'misses': self.misses,
        }
