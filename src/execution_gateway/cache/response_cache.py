"""
Short-TTL cache of successful fallback-chain results.

Entries older than the TTL are treated as absent and removed lazily on
lookup; ``put`` also sweeps expired entries of the shard it writes to and
evicts the oldest entries once the shard is full. Keys are spread over
independent shards so unrelated keys never contend on one lock.
"""

import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional

import structlog

from execution_gateway.monitoring.metrics import cache_lookups_total

logger = structlog.get_logger(__name__)

DEFAULT_SHARDS = 16


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the monotonic time it was stored."""

    key: str
    value: Any
    stored_at: float


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()


class ResponseCache:
    """
    Sharded TTL cache.

    Attributes:
        ttl: Entry lifetime in seconds
        max_entries: Approximate bound on total entries (split across shards)
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        max_entries: int = 1024,
        shards: int = DEFAULT_SHARDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        if max_entries < 1 or shards < 1:
            raise ValueError("max_entries and shards must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._shards = [_Shard() for _ in range(shards)]
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the cached value for ``key``, or ``default`` if absent or expired.

        Expired entries are removed as a side effect.
        """
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is not None and self._expired(entry):
                del shard.entries[key]
                entry = None
                result = "expired"
            else:
                result = "hit" if entry is not None else "miss"
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1

        cache_lookups_total.labels(result=result).inc()
        return entry.value if entry is not None else default

    def put(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` (replacing any previous entry)."""
        shard = self._shard(key)
        now = self._clock()
        with shard.lock:
            shard.entries.pop(key, None)
            shard.entries[key] = CacheEntry(key=key, value=value, stored_at=now)
            self._sweep(shard)
            capacity = self._shard_capacity()
            while len(shard.entries) > capacity:
                evicted, _ = shard.entries.popitem(last=False)
                logger.debug("Evicted cache entry", key=evicted)

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry for inspection (None if absent or expired)."""
        shard = self._shard(key)
        with shard.lock:
            entry = shard.entries.get(key)
            if entry is None or self._expired(entry):
                return None
            return entry

    def purge_expired(self) -> int:
        """Remove every expired entry; returns the number removed."""
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += self._sweep(shard)
        if removed:
            logger.debug("Purged expired cache entries", removed=removed)
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
        logger.info("Response cache cleared")

    def __len__(self) -> int:
        return sum(len(shard.entries) for shard in self._shards)

    def __contains__(self, key: Hashable) -> bool:
        return isinstance(key, str) and self.entry(key) is not None

    def _shard(self, key: str) -> _Shard:
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    def _shard_capacity(self) -> int:
        return max(1, -(-self.max_entries // len(self._shards)))

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at > self.ttl

    def _sweep(self, shard: _Shard) -> int:
        stale = [key for key, entry in shard.entries.items() if self._expired(entry)]
        for key in stale:
            del shard.entries[key]
        return len(stale)
