"""Database layer: per-database pools, per-team routing, provisioning, monitoring and caching.

POOL USAGE POLICY:
  - DatabaseContext.connections  System and named databases (ConnectionManager)
  - DatabaseContext.teams        Team databases resolved from the teams table
  - Routes get pools through api.handlers wrappers, never by holding a pool globally.
"""

from .async_connection import AsyncDatabasePool, ConnectionManager, PoolConfig, run_transaction
from .context import DatabaseContext, get_db_context
from .errors import (
    DbConnectionError,
    DbError,
    DbErrorType,
    DbPermissionError,
    DbTimeoutError,
    DeadlockError,
    ProvisioningError,
    ProvisioningRequiredError,
    TeamNotFoundError,
    classify_error,
)
from .monitored_pool import MonitoredPool
from .pool_registry import PoolRegistry, PoolState
from .provisioner import TeamDatabaseProvisioner
from .query_cache import QueryCache
from .query_monitor import QueryMonitor
from .team_connection import TeamConnectionManager, TeamDatabaseConfig

__all__ = [
    "AsyncDatabasePool",
    "ConnectionManager",
    "PoolConfig",
    "run_transaction",
    "DatabaseContext",
    "get_db_context",
    "DbConnectionError",
    "DbError",
    "DbErrorType",
    "DbPermissionError",
    "DbTimeoutError",
    "DeadlockError",
    "ProvisioningError",
    "ProvisioningRequiredError",
    "TeamNotFoundError",
    "classify_error",
    "MonitoredPool",
    "PoolRegistry",
    "PoolState",
    "TeamDatabaseProvisioner",
    "QueryCache",
    "QueryMonitor",
    "TeamConnectionManager",
    "TeamDatabaseConfig",
]
