import asyncio
import inspect
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import DatabaseConfig, config  # noqa: E402
from database.async_connection import ConnectionManager  # noqa: E402
from database.context import DatabaseContext  # noqa: E402
from database.errors import ErrorLog  # noqa: E402
from database.provisioner import TeamDatabaseProvisioner  # noqa: E402
from database.query_cache import QueryCache  # noqa: E402
from database.query_monitor import QueryMonitor  # noqa: E402
from database.team_connection import TEAM_LOOKUP_SQL, TeamConnectionManager  # noqa: E402

QueryHandler = Callable[[str, str, tuple], Any]


def _default_handler(method: str, sql: str, args: tuple) -> Any:
    if method == "fetch":
        return []
    if method == "execute":
        return "OK"
    return None


class FakeTransaction:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def __aenter__(self):
        self.conn.begins += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.rollbacks += 1
        return False


class FakeConnection:
    """asyncpg connection stub; `handler(method, sql, args)` returns a value or an exception to raise."""

    def __init__(self, handler: Optional[QueryHandler] = None):
        self.handler = handler or _default_handler
        self.calls: List[tuple] = []
        self.begins = 0
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    async def _run(self, method: str, sql: str, args: tuple) -> Any:
        self.calls.append((method, sql, args))
        result = self.handler(method, sql, args)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch(self, sql, *args, **_kwargs):
        return await self._run("fetch", sql, args)

    async def fetchrow(self, sql, *args, **_kwargs):
        return await self._run("fetchrow", sql, args)

    async def fetchval(self, sql, *args, **_kwargs):
        return await self._run("fetchval", sql, args)

    async def execute(self, sql, *args, **_kwargs):
        return await self._run("execute", sql, args)

    def transaction(self):
        return FakeTransaction(self)

    def executed(self) -> List[str]:
        return [" ".join(sql.split()) for method, sql, _ in self.calls if method == "execute"]

    async def close(self):
        self.closed = True


class FakePool:
    """Stands in for AsyncDatabasePool, counting leases and their release."""

    def __init__(self, name: str = "pool", handler: Optional[QueryHandler] = None):
        self.name = name
        self.conn = FakeConnection(handler)
        self.acquired = 0
        self.released = 0
        self.errors: List[Any] = []
        self.healthy = True
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        try:
            yield self.conn
        finally:
            self.released += 1

    async def fetch(self, sql, *args):
        async with self.acquire() as conn:
            return await conn.fetch(sql, *args)

    async def fetchrow(self, sql, *args):
        async with self.acquire() as conn:
            return await conn.fetchrow(sql, *args)

    async def fetchval(self, sql, *args):
        async with self.acquire() as conn:
            return await conn.fetchval(sql, *args)

    async def execute(self, sql, *args):
        async with self.acquire() as conn:
            return await conn.execute(sql, *args)

    async def test_connection(self):
        return self.healthy

    def record_error(self, error):
        self.errors.append(error)

    def stats(self) -> Dict[str, Any]:
        return {"database": self.name, "error_count": len(self.errors), "in_use": self.acquired - self.released}

    async def close(self):
        self.closed = True


def make_db_config(**overrides) -> DatabaseConfig:
    db_config = DatabaseConfig()
    db_config.host = "db.internal"
    db_config.port = 5432
    db_config.database = "saas_master"
    db_config.user = "master"
    db_config.password = "master-secret"
    db_config.admin_user = "postgres"
    db_config.admin_password = "admin-secret"
    db_config.admin_database = "postgres"
    db_config.max_retries = 3
    db_config.retry_delay = 0
    db_config.team_max_retries = 2
    db_config.team_retry_delay = 0
    for key, value in overrides.items():
        setattr(db_config, key, value)
    return db_config


def team_row(team_code: str = "acme", owner_id: Any = 42, **overrides) -> Dict[str, Any]:
    row = {
        "id": 7,
        "team_code": team_code,
        "name": f"Team {team_code}",
        "db_host": "tenant-db.internal",
        "db_name": f"team_{team_code}",
        "db_username": f"team_{team_code}_user",
        "db_password": "s3cret",
        "owner_id": owner_id,
        "workspace_id": 3,
    }
    row.update(overrides)
    return row


class FakeDatabase:
    """A system database holding a `teams` table plus per-team fake pools."""

    def __init__(self, teams: Optional[Dict[str, Dict[str, Any]]] = None, team_handler: Optional[QueryHandler] = None):
        self.teams = teams if teams is not None else {"acme": team_row()}
        self.team_handler = team_handler
        self.system_pool = FakePool("saas_master", self._system_handler)
        self.team_pools: Dict[str, FakePool] = {}
        self.team_pool_creations = 0
        self.team_pool_error: Optional[BaseException] = None
        self.creation_delay = 0.0

    def _system_handler(self, method, sql, args):
        if method == "fetchrow" and sql == TEAM_LOOKUP_SQL:
            return self.teams.get(args[0])
        if sql == "SELECT 1":
            return 1
        return _default_handler(method, sql, args)

    async def system_factory(self, pool_config):
        return self.system_pool

    async def team_factory(self, pool_config):
        self.team_pool_creations += 1
        if self.creation_delay:
            await asyncio.sleep(self.creation_delay)
        if self.team_pool_error is not None:
            raise self.team_pool_error
        pool = FakePool(pool_config.database, self.team_handler)
        self.team_pools[pool_config.database] = pool
        return pool


def build_context(fake_db: FakeDatabase, db_config: Optional[DatabaseConfig] = None, connect=None) -> DatabaseContext:
    db_config = db_config or make_db_config()
    connections = ConnectionManager(db_config, pool_factory=fake_db.system_factory)
    return DatabaseContext(
        connections=connections,
        teams=TeamConnectionManager(connections, db_config, pool_factory=fake_db.team_factory),
        provisioner=TeamDatabaseProvisioner(db_config, connect=connect),
        cache=QueryCache(ttl_seconds=60, max_items=100),
        monitor=QueryMonitor(),
        errors=ErrorLog(),
    )


@pytest.fixture
def db_config():
    return make_db_config()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config.security, "jwt_secret", "test-secret")
    monkeypatch.setattr(config.security, "jwt_algorithm", "HS256")
    return "test-secret"


@pytest_asyncio.fixture
async def make_client():
    """Yield a factory that builds an httpx client around create_app(ctx)."""
    import app as service_app

    clients: List[httpx.AsyncClient] = []

    async def _make(ctx: DatabaseContext) -> httpx.AsyncClient:
        application = service_app.create_app(db_context=ctx)
        transport = httpx.ASGITransport(app=application)
        client = httpx.AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
