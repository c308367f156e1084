"""
Async Database Connection Pools
Named asyncpg pools for the system database, with query/transaction retry.
"""
import asyncio
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import asyncpg

from config import DatabaseConfig, config
from database.errors import DbConnectionError, DbError, classify_error
from database.pool_registry import PoolRegistry
from database.retry import run_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")
TransactionWork = Callable[[Any], Awaitable[T]]


@dataclass
class PoolConfig:
    """Database pool configuration"""
    host: str
    port: int
    user: str
    password: str
    database: str
    min_size: int = 1
    max_size: int = 10
    command_timeout: float = 30.0
    connect_timeout: float = 10.0
    acquire_timeout: float = 10.0
    max_inactive_connection_lifetime: float = 300.0
    ssl: bool = False
    ssl_verify: bool = False

    def __repr__(self) -> str:
        return (
            f"PoolConfig(host={self.host!r}, port={self.port}, user={self.user!r}, "
            f"database={self.database!r}, max_size={self.max_size})"
        )


def pool_config_from(db_config: DatabaseConfig, database: Optional[str] = None) -> PoolConfig:
    """Build the system pool configuration from DatabaseConfig."""
    return PoolConfig(
        host=db_config.host,
        port=db_config.port,
        user=db_config.user,
        password=db_config.password,
        database=database or db_config.database,
        min_size=db_config.pool_min_size,
        max_size=db_config.pool_max_size,
        command_timeout=db_config.command_timeout,
        connect_timeout=db_config.connect_timeout,
        acquire_timeout=db_config.acquire_timeout,
        ssl=db_config.ssl,
        ssl_verify=db_config.ssl_verify,
    )


def build_ssl_context(pool_config: PoolConfig) -> Optional[ssl.SSLContext]:
    if not pool_config.ssl:
        return None
    ctx = ssl.create_default_context()
    if not pool_config.ssl_verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


class AsyncDatabasePool:
    """Async database connection pool manager"""

    def __init__(self, config: PoolConfig) -> None:
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._ssl_context = build_ssl_context(config)
        self.created_at = datetime.now(timezone.utc)
        self.error_count = 0
        self.last_error: Optional[str] = None

    async def initialize(self) -> None:
        """Initialize connection pool with timeout protection"""
        if self._pool is not None:
            logger.warning("Pool already initialized for %s", self.config.database)
            return

        try:
            # Use asyncio.wait_for to prevent hanging if DB is unreachable
            self._pool = await asyncio.wait_for(
                asyncpg.create_pool(
                    host=self.config.host,
                    port=self.config.port,
                    user=self.config.user,
                    password=self.config.password,
                    database=self.config.database,
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                    command_timeout=self.config.command_timeout,
                    timeout=self.config.connect_timeout,
                    max_inactive_connection_lifetime=self.config.max_inactive_connection_lifetime,
                    ssl=self._ssl_context,
                ),
                timeout=self.config.connect_timeout + 5  # Extra buffer for pool setup
            )
            logger.info(
                "✅ Database pool initialized for %s@%s (min=%s, max=%s)",
                self.config.database,
                self.config.host,
                self.config.min_size,
                self.config.max_size,
            )
        except asyncio.TimeoutError:
            logger.error(
                "❌ Connection to %s timed out after %.1fs",
                self.config.database, self.config.connect_timeout,
            )
            raise
        except Exception as exc:
            logger.error("❌ Pool initialization failed for %s: %s", self.config.database, exc)
            raise

    async def close(self, timeout: float = 10.0) -> None:
        """Close connection pool, terminating it if leases are not returned in time"""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
            logger.info("✅ Database pool closed for %s", self.config.database)
        except asyncio.TimeoutError:
            logger.warning("Pool close timed out for %s, terminating", self.config.database)
            pool.terminate()

    @property
    def pool(self) -> asyncpg.Pool:
        """Get pool instance"""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    def acquire(self):
        """Lease a connection for the duration of an `async with` block.

        Usage: async with pool.acquire() as conn: ...
        The connection is returned to the pool on every exit path.
        """
        return self.pool.acquire(timeout=self.config.acquire_timeout)

    async def fetch(self, query: str, *args: Any, timeout: Optional[float] = None) -> List[asyncpg.Record]:
        """Execute query and return all rows"""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None) -> Optional[asyncpg.Record]:
        """Execute query and return single row"""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args: Any, column: int = 0, timeout: Optional[float] = None) -> Any:
        """Execute query and return single value"""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column, timeout=timeout)

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        """Execute query without returning data"""
        async with self.acquire() as conn:
            return await conn.execute(query, *args, timeout=timeout)

    async def test_connection(self, timeout: float = 3.0) -> bool:
        """Test database connection with timeout protection"""
        try:
            result = await asyncio.wait_for(
                self.fetchval("SELECT 1", timeout=timeout),
                timeout=timeout + 1.0
            )
            return result == 1
        except asyncio.TimeoutError:
            logger.error("Connection test timed out after %.1fs (%s)", timeout, self.config.database)
            return False
        except Exception as exc:
            logger.error("Connection test failed for %s: %s", self.config.database, exc)
            return False

    def record_error(self, error: DbError) -> None:
        self.error_count += 1
        self.last_error = error.message

    @property
    def health_status(self) -> str:
        if self.error_count > 5:
            return "critical"
        if self.error_count > 2:
            return "degraded"
        return "healthy"

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "database": self.config.database,
            "host": self.config.host,
            "created_at": self.created_at.isoformat(),
            "error_count": self.error_count,
            "last_error": self.last_error,
            "health": self.health_status,
        }
        if self._pool is not None:
            size = self._pool.get_size()
            idle = self._pool.get_idle_size()
            stats.update(
                size=size,
                idle=idle,
                in_use=size - idle,
                min_size=self._pool.get_min_size(),
                max_size=self._pool.get_max_size(),
            )
        return stats


PoolCreator = Callable[[PoolConfig], Awaitable[AsyncDatabasePool]]


async def create_pool(pool_config: PoolConfig) -> AsyncDatabasePool:
    """Open and initialize an AsyncDatabasePool."""
    pool = AsyncDatabasePool(pool_config)
    await pool.initialize()
    return pool


async def run_transaction(
    pool: Any,
    work: TransactionWork,
    *,
    attempts: int,
    base_delay: float,
    label: str,
    database: Optional[str] = None,
    team_code: Optional[str] = None,
) -> Any:
    """
    Run work(conn) inside one transaction on one leased connection.

    Commits when work returns, rolls back when it raises, and always returns
    the connection to the pool. The whole unit is re-run only for transient
    failures (deadlock, lock timeout), at most `attempts` times in total.
    """
    async def unit() -> Any:
        async with pool.acquire() as conn:
            async with conn.transaction():
                return await work(conn)

    return await run_with_retry(
        unit,
        attempts=attempts,
        base_delay=base_delay,
        label=label,
        database=database,
        team_code=team_code,
        should_retry=lambda error: error.is_transient,
    )


class ConnectionManager:
    """
    Owns the system (master) pool and any other named pools.

    Pools are created lazily through a PoolRegistry, so concurrent first calls
    for the same name share one pool.
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        *,
        pool_factory: Optional[PoolCreator] = None,
        registry: Optional[PoolRegistry] = None,
    ) -> None:
        self.db_config = db_config or config.database
        self._pool_factory = pool_factory or create_pool
        self.registry = registry or PoolRegistry("system")

    @property
    def default_database(self) -> str:
        return self.db_config.database

    def pool_config(self, database_name: Optional[str] = None) -> PoolConfig:
        return pool_config_from(self.db_config, database_name)

    async def get_pool(self, database_name: Optional[str] = None) -> AsyncDatabasePool:
        name = database_name or self.default_database
        pool = self.registry.get(name)
        if pool is not None:
            return pool

        async def _open() -> AsyncDatabasePool:
            try:
                return await self._pool_factory(self.pool_config(name))
            except Exception as exc:
                error = classify_error(exc, database=name)
                if error is None:
                    raise
                raise error from exc

        return await self.registry.get_or_create(name, _open)

    async def _run(self, operation: str, sql: str, *params: Any, database_name: Optional[str] = None) -> Any:
        name = database_name or self.default_database

        def _exhausted(error: DbError, attempts: int) -> DbError:
            return DbConnectionError(
                f"{operation} on {name} failed after {attempts} attempts: {error.message}",
                database=name,
                cause_kind=error.cause_kind,
            )

        async def _once() -> Any:
            pool = await self.get_pool(name)
            try:
                return await getattr(pool, operation)(sql, *params)
            except Exception as exc:
                error = classify_error(exc, database=name)
                if error is not None:
                    pool.record_error(error)
                raise

        try:
            return await run_with_retry(
                _once,
                attempts=self.db_config.max_retries,
                base_delay=self.db_config.retry_delay,
                label=f"query[{operation}]",
                database=name,
                on_exhausted=_exhausted,
            )
        except DbError as error:
            if error.is_connection_failure:
                self.evict(name)
            raise

    async def query(self, sql: str, *params: Any, database_name: Optional[str] = None) -> List[asyncpg.Record]:
        """Run a statement and return all rows, retrying transient failures."""
        return await self._run("fetch", sql, *params, database_name=database_name)

    async def fetchrow(self, sql: str, *params: Any, database_name: Optional[str] = None) -> Optional[asyncpg.Record]:
        return await self._run("fetchrow", sql, *params, database_name=database_name)

    async def fetchval(self, sql: str, *params: Any, database_name: Optional[str] = None) -> Any:
        return await self._run("fetchval", sql, *params, database_name=database_name)

    async def execute(self, sql: str, *params: Any, database_name: Optional[str] = None) -> str:
        return await self._run("execute", sql, *params, database_name=database_name)

    async def transaction(
        self,
        database_name: Optional[str],
        work: TransactionWork,
        max_retries: Optional[int] = None,
    ) -> Any:
        """Run work(conn) in a transaction on the named pool."""
        name = database_name or self.default_database
        pool = await self.get_pool(name)
        try:
            return await run_transaction(
                pool,
                work,
                attempts=max_retries if max_retries is not None else self.db_config.max_retries,
                base_delay=self.db_config.retry_delay,
                label=f"transaction[{name}]",
                database=name,
            )
        except DbError as error:
            pool.record_error(error)
            if error.is_connection_failure:
                self.evict(name)
            raise

    async def test_connection(self, database_name: Optional[str] = None) -> bool:
        try:
            pool = await self.get_pool(database_name)
        except DbError as error:
            logger.error("Connection test for %s failed: %s", database_name or self.default_database, error.message)
            return False
        healthy = await pool.test_connection()
        if not healthy:
            self.evict(database_name)
        return healthy

    def evict(self, database_name: Optional[str] = None) -> bool:
        """Forget a pool whose database went away; the next call reconnects."""
        name = database_name or self.default_database
        evicted = self.registry.evict(name) is not None
        if evicted:
            logger.warning("Pool for %s evicted after a connection failure", name)
        return evicted

    async def close_pool(self, database_name: Optional[str] = None) -> bool:
        return await self.registry.close(database_name or self.default_database)

    async def close_all(self) -> None:
        await self.registry.close_all()

    def pool_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: pool.stats() for name, pool in self.registry.items()}
