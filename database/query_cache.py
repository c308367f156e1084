"""
Query Cache - process-wide cache for read query results.

Keys are a canonical signature of (sql, params, db key). Invalidation is
coarse: any successful non-read request wipes the whole cache, so there is
no per-table or per-team dependency tracking.
"""
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with TTL support"""
    value: Any
    expires_at: float
    hits: int = 0

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.monotonic()) > self.expires_at


class QueryCache:
    """
    LRU + TTL cache of read results.

    All methods are synchronous, so each one runs atomically on the event
    loop; clear() is idempotent and may be called from any request.
    """

    def __init__(self, ttl_seconds: float = 60.0, max_items: int = 500, enabled: bool = True) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self.enabled = enabled
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.clears = 0
        # bumped by clear(); a read that started before a clear must not store its rows
        self.generation = 0

    @staticmethod
    def signature(sql: str, params: Sequence[Any] = (), db_key: Optional[str] = None) -> str:
        payload = json.dumps(
            {"sql": " ".join(sql.split()), "params": list(params), "db": db_key},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def is_cacheable(sql: str) -> bool:
        return sql.lstrip().upper().startswith("SELECT")

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired():
            del self._entries[key]
            self.misses += 1
            logger.debug("Query cache EXPIRED: %s", key[:12])
            return None
        entry.hits += 1
        self.hits += 1
        self._entries.move_to_end(key)
        logger.debug("Query cache HIT: %s", key[:12])
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store value; skipped when a clear() ran since `generation` was read."""
        if not self.enabled:
            return False
        if generation is not None and generation != self.generation:
            logger.debug("Query cache SKIP (cleared during fetch): %s", key[:12])
            return False
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_items:
            self._entries.popitem(last=False)
            self.evictions += 1
        return True

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self.clears += 1
        self.generation += 1
        if count:
            logger.debug("Query cache CLEARED: %d entries", count)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "enabled": self.enabled,
            "item_count": len(self._entries),
            "max_items": self.max_items,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            "evictions": self.evictions,
            "clears": self.clears,
            "generation": self.generation,
        }
