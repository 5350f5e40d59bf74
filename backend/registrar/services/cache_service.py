"""
Process-local TTL cache for ticketing backend reads.

CACHING STRATEGY
================

What we cache:
  - Event listing, single events, items, quotas and order lookups
  - Cache key pattern: "{endpoint}:{json(params, sort_keys=True)}"
  - Every entry is tagged with a namespace: the event slug it belongs to,
    or GLOBAL_NAMESPACE ("<events>") for the global listing. Angle brackets
    never appear in a URL slug, so no event can share it

Why:
  - Catalog data (events, items, quotas) changes rarely
  - The availability check reads event + items + quotas on every registration

Invalidation strategy:
  - On order creation or status change: drop the event's namespace and
    the global namespace
  - TTL-based expiry as safety net (5 minutes)

  Namespaces replace prefix scanning: an event slug that happens to be a
  substring of another slug does not knock out unrelated entries.

Concurrency:
  - Writes (set, invalidate, clear) are serialized by an asyncio.Lock
  - Reads never take the lock; a slightly stale read during a write is fine,
    the cache is an optimization and never decides correctness
  - Every invalidation advances the namespace generation. A reader notes
    the generation before fetching and passes it to set(); a payload
    fetched before an invalidation is dropped instead of cached
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from registrar.core.logging import get_logger
from registrar.core.metrics import record_cache_lookup

logger = get_logger(__name__)

GLOBAL_NAMESPACE = "<events>"


def make_cache_key(endpoint: str, params: Optional[dict] = None) -> str:
    param_str = json.dumps(params, sort_keys=True, default=str) if params else ""
    return f"{endpoint}:{param_str}"


@dataclass
class CacheEntry:
    payload: Any
    fetched_at: float
    namespace: str


class TTLCache:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._generations: dict[str, int] = {}
        self._cleared_at = 0
        self._counter = 0
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.fetched_at < self.ttl_seconds:
            self._hits += 1
            record_cache_lookup(hit=True)
            logger.debug("cache_hit", key=key)
            return entry.payload
        self._misses += 1
        record_cache_lookup(hit=False)
        logger.debug("cache_miss", key=key)
        return None

    def generation(self, namespace: str) -> int:
        """Token that changes whenever `namespace` is invalidated or the cache is cleared."""
        return max(self._generations.get(namespace, 0), self._cleared_at)

    async def set(
        self,
        key: str,
        payload: Any,
        namespace: str = GLOBAL_NAMESPACE,
        generation: Optional[int] = None,
    ) -> None:
        async with self._lock:
            if generation is not None and generation != self.generation(namespace):
                logger.debug("cache_set_stale", key=key, namespace=namespace)
                return
            self._entries[key] = CacheEntry(payload=payload, fetched_at=self._clock(), namespace=namespace)
        logger.debug("cache_set", key=key, namespace=namespace, ttl=self.ttl_seconds)

    async def invalidate_namespace(self, namespace: str) -> int:
        """Drop every entry for the namespace plus the global listing."""
        async with self._lock:
            doomed = [
                key for key, entry in self._entries.items()
                if entry.namespace in (namespace, GLOBAL_NAMESPACE)
            ]
            for key in doomed:
                del self._entries[key]
            self._counter += 1
            self._generations[namespace] = self._counter
            self._generations[GLOBAL_NAMESPACE] = self._counter
        logger.info("cache_invalidated", namespace=namespace, keys_deleted=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._counter += 1
            self._cleared_at = self._counter
        logger.info("cache_cleared")

    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "keys": sorted(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / max(lookups, 1) * 100, 2),
        }
