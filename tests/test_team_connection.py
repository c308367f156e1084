"""
Tests for database/team_connection.py: team pool routing and eviction.
"""
import asyncio
import sys
from pathlib import Path

import asyncpg
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from conftest import FakeDatabase, build_context, team_row  # noqa: E402
from database.errors import (  # noqa: E402
    DbConnectionError,
    DbErrorType,
    DeadlockError,
    ProvisioningRequiredError,
    TeamNotFoundError,
)
from database.pool_registry import PoolState  # noqa: E402
from database.team_connection import TeamDatabaseConfig  # noqa: E402


@pytest.mark.asyncio
async def test_team_pool_uses_team_credentials(fake_db):
    ctx = build_context(fake_db)

    pool = await ctx.teams.get_team_pool_by_code("acme")

    assert pool is fake_db.team_pools["team_acme"]
    assert ctx.teams.registry.state("acme") == PoolState.READY


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_team_pool(fake_db):
    fake_db.creation_delay = 0.02
    ctx = build_context(fake_db)

    pools = await asyncio.gather(*[ctx.teams.get_team_pool_by_code("acme") for _ in range(8)])

    assert fake_db.team_pool_creations == 1
    assert len({id(p) for p in pools}) == 1


@pytest.mark.asyncio
async def test_unknown_team_raises_not_found_and_leaves_no_entry(fake_db):
    ctx = build_context(fake_db)

    with pytest.raises(TeamNotFoundError):
        await ctx.teams.get_team_pool_by_code("ghost")

    assert ctx.teams.registry.state("ghost") == PoolState.ABSENT
    assert fake_db.team_pool_creations == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "   ", "null", "undefined", "bad code!"])
async def test_invalid_team_code_is_not_looked_up(fake_db, code):
    ctx = build_context(fake_db)

    with pytest.raises(TeamNotFoundError):
        await ctx.teams.get_team_pool_by_code(code)

    assert fake_db.system_pool.conn.calls == []


@pytest.mark.asyncio
async def test_missing_team_database_requires_provisioning(fake_db):
    fake_db.team_pool_error = asyncpg.exceptions.InvalidCatalogNameError('database "team_acme" does not exist')
    ctx = build_context(fake_db)

    with pytest.raises(ProvisioningRequiredError) as exc_info:
        await ctx.teams.get_team_pool_by_code("acme")

    assert exc_info.value.status_code == 409
    assert ctx.teams.registry.state("acme") == PoolState.ABSENT
    assert "acme" in ctx.teams.connection_status()["last_errors"]


@pytest.mark.asyncio
async def test_connection_error_evicts_team_pool(fake_db):
    ctx = build_context(fake_db)
    first = await ctx.teams.get_team_pool_by_code("acme")

    ctx.teams.handle_error("acme", DbConnectionError("server closed the connection", team_code="acme"), first)
    await asyncio.sleep(0)

    assert ctx.teams.registry.state("acme") == PoolState.ABSENT
    assert first.closed is True

    second = await ctx.teams.get_team_pool_by_code("acme")
    assert second is not first
    assert fake_db.team_pool_creations == 2


@pytest.mark.asyncio
async def test_deadlock_does_not_evict_team_pool(fake_db):
    fake_db.team_handler = lambda *_: asyncpg.exceptions.DeadlockDetectedError("deadlock detected")
    ctx = build_context(fake_db)

    async def work(conn):
        await conn.execute("UPDATE stock SET qty = qty - 1")

    with pytest.raises(DeadlockError):
        await ctx.teams.team_transaction("acme", work, max_retries=2)

    pool = fake_db.team_pools["team_acme"]
    assert pool.conn.begins == 2
    assert pool.acquired == pool.released == 2
    assert ctx.teams.registry.state("acme") == PoolState.READY


@pytest.mark.asyncio
async def test_failed_health_check_evicts(fake_db):
    ctx = build_context(fake_db)
    pool = await ctx.teams.get_team_pool_by_code("acme")
    pool.healthy = False

    assert await ctx.teams.test_team_connection("acme") is False
    assert ctx.teams.registry.state("acme") == PoolState.ABSENT


def test_team_config_parses_host_port():
    team = TeamDatabaseConfig.from_record(team_row(db_host="10.0.0.5:6432"), default_port=5432)

    assert team.db_host == "10.0.0.5"
    assert team.port == 6432
    assert "s3cret" not in repr(team)
    assert team.to_dict()["db_password"] == "***REDACTED***"


def test_team_config_defaults_port():
    team = TeamDatabaseConfig.from_record(team_row(), default_port=5433)
    assert team.port == 5433


@pytest.mark.asyncio
async def test_connection_status_lists_active_pools():
    fake_db = FakeDatabase(teams={"acme": team_row("acme"), "globex": team_row("globex")})
    ctx = build_context(fake_db)
    await ctx.teams.get_team_pool_by_code("acme")
    await ctx.teams.get_team_pool_by_code("globex")

    status = ctx.teams.connection_status()

    assert status["active_pools"] == 2
    assert status["pools_created"] == 2
    assert set(status["teams"]) == {"acme", "globex"}


@pytest.mark.asyncio
async def test_padded_team_code_reaches_the_same_pool(fake_db):
    ctx = build_context(fake_db)
    pool = await ctx.teams.get_team_pool_by_code("acme")

    async def work(conn):
        return await conn.fetchval("SELECT 1")

    await ctx.teams.team_transaction(" acme ", work)
    assert pool.acquired == 1

    assert ctx.teams.evict(" acme") is True
    assert ctx.teams.registry.state("acme") == PoolState.ABSENT
    assert ctx.teams.evict("null") is False


@pytest.mark.asyncio
async def test_exhausted_deadlock_does_not_evict(fake_db):
    ctx = build_context(fake_db)
    pool = await ctx.teams.get_team_pool_by_code("acme")
    error = DbConnectionError("fetch failed after 2 attempts", team_code="acme", cause_kind=DbErrorType.DEADLOCK)

    ctx.teams.handle_error("acme", error, pool)

    assert ctx.teams.registry.state("acme") == PoolState.READY
    assert pool.errors == [error]
    assert ctx.teams.connection_status()["last_errors"] == {"acme": error.message}


@pytest.mark.asyncio
async def test_close_team_pool_waits_for_close(fake_db):
    ctx = build_context(fake_db)
    pool = await ctx.teams.get_team_pool_by_code("acme")

    assert await ctx.teams.close_team_pool(" acme") is True

    assert pool.closed is True
    assert "acme" not in ctx.teams.registry
    assert await ctx.teams.close_team_pool("acme") is False
