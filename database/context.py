"""
DatabaseContext - the one object that owns every pool, the cache and the monitor.

Built by the application lifespan (init/shutdown), stored on app.state.db and
resolved per request with the get_db_context dependency. Nothing in the
database layer keeps module-level pool state.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from config import AppConfig, config
from database.async_connection import ConnectionManager
from database.errors import ErrorLog
from database.provisioner import TeamDatabaseProvisioner
from database.query_cache import QueryCache
from database.query_monitor import QueryMonitor
from database.team_connection import TeamConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class DatabaseContext:
    connections: ConnectionManager
    teams: TeamConnectionManager
    provisioner: TeamDatabaseProvisioner
    cache: QueryCache
    monitor: QueryMonitor
    errors: ErrorLog = field(default_factory=ErrorLog)
    system_ready: bool = False
    init_error: Optional[str] = None

    @classmethod
    def from_config(cls, app_config: Optional[AppConfig] = None) -> "DatabaseContext":
        app_config = app_config or config
        connections = ConnectionManager(app_config.database)
        return cls(
            connections=connections,
            teams=TeamConnectionManager(connections, app_config.database),
            provisioner=TeamDatabaseProvisioner(app_config.database),
            cache=QueryCache(
                ttl_seconds=app_config.cache.ttl_seconds,
                max_items=app_config.cache.max_items,
                enabled=app_config.cache.enabled,
            ),
            monitor=QueryMonitor(
                slow_query_ms=app_config.monitor.slow_query_ms,
                slow_api_ms=app_config.monitor.slow_api_ms,
                slow_transaction_ms=app_config.monitor.slow_transaction_ms,
                history_size=app_config.monitor.history_size,
            ),
        )

    async def init(self) -> None:
        """Open the system pool. Failure is recorded, not raised, so the service can still report health."""
        try:
            await self.connections.get_pool()
            self.system_ready = True
            self.init_error = None
            logger.info("✅ System database ready (%s)", self.connections.default_database)
        except Exception as exc:
            self.system_ready = False
            self.init_error = str(exc)
            logger.error("❌ System database unavailable at startup: %s", exc)

    async def shutdown(self) -> None:
        await self.teams.close_all()
        await self.connections.close_all()
        self.cache.clear()
        self.system_ready = False
        logger.info("Database context shut down")


def get_db_context(request: Request) -> DatabaseContext:
    """FastAPI dependency returning the application's DatabaseContext."""
    ctx = getattr(request.app.state, "db", None)
    if ctx is None:
        raise RuntimeError("Database context not initialized. Is the application lifespan running?")
    return ctx
