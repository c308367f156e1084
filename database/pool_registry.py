"""
Keyed pool-of-pools.

Each key (a logical database name or a team code) moves through
ABSENT -> CREATING -> READY, and back to ABSENT on eviction. While a key is
CREATING every caller awaits the same in-flight creation task, so concurrent
first access never opens a second pool for the same key.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

PoolFactory = Callable[[], Awaitable[Any]]


class PoolState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    READY = "ready"


class PoolRegistry:
    """Registry of live pools with single-flight creation."""

    def __init__(self, name: str = "pools", close_timeout: float = 10.0) -> None:
        self.name = name
        self.close_timeout = close_timeout
        self._ready: Dict[str, Any] = {}
        self._creating: Dict[str, "asyncio.Task[Any]"] = {}
        self._closing: Set["asyncio.Task[None]"] = set()
        self.created_count = 0

    def state(self, key: str) -> PoolState:
        if key in self._ready:
            return PoolState.READY
        if key in self._creating:
            return PoolState.CREATING
        return PoolState.ABSENT

    def get(self, key: str) -> Optional[Any]:
        return self._ready.get(key)

    def keys(self) -> List[str]:
        return list(self._ready.keys())

    def items(self) -> List[tuple]:
        return list(self._ready.items())

    def __contains__(self, key: str) -> bool:
        return key in self._ready

    def __len__(self) -> int:
        return len(self._ready)

    async def get_or_create(self, key: str, factory: PoolFactory) -> Any:
        """Return the READY pool for key, creating it at most once."""
        pool = self._ready.get(key)
        if pool is not None:
            return pool

        task = self._creating.get(key)
        if task is None:
            task = asyncio.ensure_future(self._create(key, factory))
            self._creating[key] = task
        else:
            logger.debug("[%s] joining in-flight pool creation for %s", self.name, key)

        # A cancelled caller must not cancel creation for the others
        return await asyncio.shield(task)

    async def _create(self, key: str, factory: PoolFactory) -> Any:
        try:
            pool = await factory()
            self._ready[key] = pool
            self.created_count += 1
            logger.info("[%s] pool ready for %s", self.name, key)
            return pool
        except Exception as exc:
            logger.warning("[%s] pool creation failed for %s: %s", self.name, key, exc)
            raise
        finally:
            self._creating.pop(key, None)

    def evict(self, key: str) -> Optional[Any]:
        """Drop the READY entry for key and close it in the background."""
        pool = self._ready.pop(key, None)
        if pool is None:
            return None
        logger.warning("[%s] evicted pool for %s", self.name, key)
        task = asyncio.ensure_future(self._close(key, pool))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return pool

    async def _close(self, key: str, pool: Any) -> None:
        try:
            await pool.close()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[%s] error closing pool for %s: %s", self.name, key, exc)

    async def close(self, key: str) -> bool:
        pool = self._ready.pop(key, None)
        if pool is None:
            return False
        await self._close(key, pool)
        logger.info("[%s] closed pool for %s", self.name, key)
        return True

    async def close_all(self) -> None:
        """Close every READY pool and wait for background closes to finish."""
        keys = list(self._ready.keys())
        for key in keys:
            await self.close(key)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        if keys:
            logger.info("[%s] closed %d pools", self.name, len(keys))
