"""
Database health check helpers.

Used by the health router to summarize system pools, team pools, the query
monitor, the query cache and recent classified errors.
"""
import asyncio
import logging
from typing import Any, Dict

from database.context import DatabaseContext

logger = logging.getLogger(__name__)

SLOW_RATIO_DEGRADED = 0.1


async def pool_roundtrip_healthy(pool: Any, timeout: float = 4.0) -> bool:
    """SELECT 1 through an existing pool, bounded by timeout."""
    try:
        value = await asyncio.wait_for(pool.fetchval("SELECT 1"), timeout=timeout)
        return str(value) == "1"
    except asyncio.TimeoutError:
        logger.warning("Health check pool roundtrip timed out after %.2fs", timeout)
        return False
    except Exception as exc:
        logger.warning("Health check pool roundtrip failed: %s", exc)
        return False


async def check_database_health(ctx: DatabaseContext, timeout: float = 4.0) -> Dict[str, Any]:
    """
    Overall status:
      critical  system pool missing or its roundtrip fails
      degraded  errors recorded, or more than 10% of monitored calls were slow
      healthy   otherwise
    """
    system_pool = ctx.connections.registry.get(ctx.connections.default_database)
    system_healthy = False
    if system_pool is not None:
        system_healthy = await pool_roundtrip_healthy(system_pool, timeout=timeout)

    query_stats = ctx.monitor.get_stats()
    error_stats = ctx.errors.stats()
    total = query_stats["total_queries"]
    slow_ratio = query_stats["slow_queries"] / total if total else 0.0

    if not system_healthy:
        status = "critical"
    elif error_stats["total"] > 0 or query_stats["total_errors"] > 0 or slow_ratio > SLOW_RATIO_DEGRADED:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "details": {
            "system_database": {
                "ready": system_healthy,
                "init_error": ctx.init_error,
                "pools": ctx.connections.pool_stats(),
            },
            "team_connections": ctx.teams.connection_status(),
            "query_stats": query_stats,
            "cache_stats": ctx.cache.stats(),
            "recent_slow_queries": ctx.monitor.get_slow_queries(5),
            "recent_errors": ctx.errors.recent(5),
            "error_stats": error_stats,
        },
    }
