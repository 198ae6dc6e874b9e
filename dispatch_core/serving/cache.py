"""
Result cache with LRU eviction.

Only successful results are stored. The dispatcher is the sole writer and
runs on a single event loop, so no lock is taken.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from dispatch_core.serving.models import Result

logger = logging.getLogger(__name__)


class ResultCache:
    """
    Bounded key -> Result store.

    Features:
    - LRU eviction once ``max_size`` entries are held
    - Optional TTL (``ttl_seconds=0`` disables expiry)
    - Hit/miss/eviction statistics
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: float = 0):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds

        self._entries: OrderedDict[str, Tuple[Result, datetime]] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Result]:
        """Get a cached result, refreshing its recency."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        result, cached_at = entry

        if self.ttl_seconds and (datetime.now() - cached_at).total_seconds() > self.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return result

    def put(self, key: str, result: Result) -> bool:
        """Cache a result. Failed results are ignored."""
        if not result.success:
            return False

        if key in self._entries:
            self._entries.move_to_end(key)
        else:
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Cache evicted {evicted}")

        self._entries[key] = (result, datetime.now())
        return True

    def invalidate(self, key: str) -> bool:
        if key in self._entries:
            del self._entries[key]
            return True
        return False

    def clear(self) -> int:
        """Clear the cache, returns count cleared."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0,
            "evictions": self._evictions,
            "ttl_seconds": self.ttl_seconds,
        }


__all__ = ["ResultCache"]
