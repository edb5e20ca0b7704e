"""
In-process TTL cache for pipeline results with single-flight computation.

Concurrent get_or_compute() calls for the same missing key share one
computation: the first caller computes, the rest wait on its Future. A
compute that raises propagates to every waiter and stores nothing.

Usage:
    cache = ResultCache(max_entries=1000)
    result = cache.get_or_compute(query.fingerprint(), 300, lambda: run(query))
"""

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from agripipe.config import DEFAULT_CACHE_MAX_ENTRIES, DEFAULT_CACHE_TTL_S

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl_s: float

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_s


class ResultCache:
    """Lock-guarded TTL cache with least-recently-accessed eviction."""

    def __init__(
        self,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        default_ttl_s: float = DEFAULT_CACHE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.default_ttl_s = default_ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, Future] = {}
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "expired": 0}

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            self._stats["expired"] += 1
            return None
        self._entries.move_to_end(key)
        return entry

    def _store(self, key: str, value: Any, ttl_s: float) -> None:
        # Caller holds the lock
        self._entries[key] = CacheEntry(key, value, self._clock(), ttl_s)
        self._entries.move_to_end(key)
        self._stats["sets"] += 1
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._stats["evictions"] += 1
            logger.debug("Evicted cache entry %s", evicted)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        with self._lock:
            self._store(key, value, self.default_ttl_s if ttl_s is None else ttl_s)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_compute(
        self,
        key: str,
        ttl_s: Optional[float],
        compute_fn: Callable[[], Any],
        cache_if: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the live cached value for key, or compute, store and return it.

        Args:
            key: Cache key.
            ttl_s: Entry lifetime in seconds (default_ttl_s if None).
            compute_fn: Zero-argument producer, called at most once per miss.
            cache_if: Optional predicate; values it rejects are returned but
                not stored.
        """
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self._stats["hits"] += 1
                return entry.value
            self._stats["misses"] += 1
            pending = self._inflight.get(key)
            if pending is None:
                pending = Future()
                self._inflight[key] = pending
                leader = True
            else:
                leader = False

        if not leader:
            logger.debug("Waiting on in-flight computation for %s", key)
            return pending.result()

        try:
            value = compute_fn()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            pending.set_exception(e)
            raise

        with self._lock:
            if cache_if is None or cache_if(value):
                self._store(key, value, ttl)
            self._inflight.pop(key, None)
        pending.set_result(value)
        return value

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            return {
                **self._stats,
                "size": len(self._entries),
                "maxEntries": self.max_entries,
                "inFlight": len(self._inflight),
                "hitRate": round(self._stats["hits"] / total, 3) if total else 0.0,
            }
