"""Response Caching - Skip repeat agent calls.

Implements time-boxed memoization of agent responses:
1. Fingerprint keys from agent id, normalized prompt prefix and file hashes
2. TTL-based expiration, checked lazily on read
3. Insertion-order eviction when capacity is exceeded

A hit bypasses rate limiting, circuit breaking and the network.
"""

import hashlib
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached response entry."""

    key: str
    value: str
    cached_at: float


@dataclass
class CacheStats:
    """Statistics for the response cache."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0


class ResponseCache:
    """Bounded TTL cache with oldest-inserted-first eviction.

    Overwriting a key refreshes its timestamp but keeps its original
    insertion position.
    """

    def __init__(
        self,
        ttl: float = 300.0,  # 5 minutes
        capacity: int = 100,
        prompt_prefix_chars: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.ttl = ttl
        self.capacity = capacity
        self.prompt_prefix_chars = prompt_prefix_chars
        self._clock = clock
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def normalize_prompt(prompt: str) -> str:
        """Collapse whitespace so cosmetic differences still hit."""
        return re.sub(r"\s+", " ", prompt.strip())

    def fingerprint(
        self,
        agent_id: str,
        prompt: str,
        file_hashes: Iterable[str] = (),
    ) -> str:
        """Create the cache key for an agent call."""
        prefix = self.normalize_prompt(prompt)[: self.prompt_prefix_chars]
        content = "\x1f".join([agent_id, prefix, ",".join(sorted(file_hashes))])
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        if self._clock() - entry.cached_at >= self.ttl:
            self._stats.expirations += 1
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        logger.debug(f"Cache hit for key {key[:12]}")
        return entry.value

    def set(self, key: str, value: str) -> None:
        """Insert or overwrite, evicting the oldest entry when over capacity."""
        existing = self._entries.get(key)
        if existing is not None:
            existing.value = value
            existing.cached_at = self._clock()
        else:
            self._entries[key] = CacheEntry(key=key, value=value, cached_at=self._clock())

        if len(self._entries) > self.capacity:
            oldest_key, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug(f"Evicted cache key {oldest_key[:12]}")

    def invalidate(self, key: str) -> bool:
        """Invalidate a specific cache entry."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.cached_at >= self.ttl]
        for key in expired:
            del self._entries[key]
            self._stats.expirations += 1
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "capacity": self.capacity,
            "ttl_seconds": self.ttl,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate": f"{self._stats.hit_rate:.1f}%",
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
        }
