import logging
from typing import Any, List, Optional

from database.async_connection import run_transaction
from database.errors import DbConnectionError, DbError
from database.query_cache import QueryCache
from database.query_monitor import QueryMonitor
from database.retry import run_with_retry

logger = logging.getLogger(__name__)


def _affected_rows(status: Any) -> Optional[int]:
    """Parse the row count out of a command tag such as 'UPDATE 3'."""
    if not isinstance(status, str):
        return None
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else None


class MonitoredPool:
    """
    The pool handed to route handlers.

    Wraps an AsyncDatabasePool bound to one database key (system database
    name or `team_<code>`). Every query method:
      1. Opens a monitor entry labelled with the route path
      2. Leases a connection from the underlying pool for that one statement
      3. Retries dropped connections, deadlocks and lock timeouts
      4. Closes the monitor entry with duration, error and affected rows

    fetch_cached() additionally reads through the shared QueryCache.
    """

    def __init__(
        self,
        pool: Any,
        *,
        db_key: str,
        monitor: QueryMonitor,
        cache: QueryCache,
        path: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 0.1,
        team_code: Optional[str] = None,
    ) -> None:
        self.pool = pool
        self.db_key = db_key
        self.monitor = monitor
        self.cache = cache
        self.path = path
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.team_code = team_code

    async def _execute_monitored(self, operation: str, query: str, *args: Any) -> Any:
        token = self.monitor.start_query(
            " ".join(query.split())[:120], args, self.db_key, self.path, kind="query",
        )

        def _exhausted(error: DbError, attempts: int) -> DbError:
            return DbConnectionError(
                f"{operation} failed after {attempts} attempts: {error.message}",
                database=self.db_key,
                team_code=self.team_code,
                cause_kind=error.cause_kind,
            )

        try:
            result = await run_with_retry(
                lambda: getattr(self.pool, operation)(query, *args),
                attempts=self.max_retries,
                base_delay=self.retry_delay,
                label=f"{operation}[{self.db_key}]",
                database=self.db_key,
                team_code=self.team_code,
                on_exhausted=_exhausted,
            )
        except Exception as exc:
            self.monitor.end_query(token, error=exc)
            if isinstance(exc, DbError) and hasattr(self.pool, "record_error"):
                self.pool.record_error(exc)
            raise

        if operation == "fetch":
            affected = len(result)
        elif operation == "execute":
            affected = _affected_rows(result)
        else:
            affected = None
        self.monitor.end_query(token, affected_rows=affected)
        return result

    # ── Core query methods ──────────────────────────────────────────────

    async def fetch(self, query: str, *args: Any) -> list:
        return await self._execute_monitored("fetch", query, *args)

    async def fetchrow(self, query: str, *args: Any):
        return await self._execute_monitored("fetchrow", query, *args)

    async def fetchval(self, query: str, *args: Any):
        return await self._execute_monitored("fetchval", query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await self._execute_monitored("execute", query, *args)

    async def fetch_cached(self, query: str, *args: Any, ttl_seconds: Optional[float] = None) -> List[dict]:
        """Read-through cache for SELECT statements; rows come back as dicts."""
        if not self.cache.is_cacheable(query):
            return [dict(r) for r in await self.fetch(query, *args)]

        key = self.cache.signature(query, args, self.db_key)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation
        rows = [dict(r) for r in await self.fetch(query, *args)]
        self.cache.set(key, rows, ttl_seconds, generation=generation)
        return rows

    async def transaction(self, work: Any, max_retries: Optional[int] = None) -> Any:
        """Run work(conn) in one transaction; see run_transaction()."""
        token = self.monitor.start_query(
            f"TRANSACTION [{self.db_key}]", None, self.db_key, self.path, kind="transaction",
        )
        try:
            result = await run_transaction(
                self.pool,
                work,
                attempts=max_retries if max_retries is not None else self.max_retries,
                base_delay=self.retry_delay,
                label=f"transaction[{self.db_key}]",
                database=self.db_key,
                team_code=self.team_code,
            )
        except Exception as exc:
            self.monitor.end_query(token, error=exc)
            raise
        self.monitor.end_query(token)
        return result

    # ── Pass-through for connection-level operations ────────────────────

    def acquire(self):
        """Lease a raw connection: `async with pool.acquire() as conn`."""
        return self.pool.acquire()
