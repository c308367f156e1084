"""
Tests for api/handlers.py through the team resource routes.
"""
import asyncio
import sys
from pathlib import Path

import asyncpg
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from conftest import FakeDatabase, build_context  # noqa: E402
from database.errors import DuplicateError  # noqa: E402
from database.pool_registry import PoolState  # noqa: E402

BRAND = {"id": 1, "order": 0, "name": "Acme", "description": None}


class BrandTable:
    """Minimal `brands` table behind the team pool."""

    def __init__(self):
        self.rows = [dict(BRAND)]
        self.fail_with = None

    def handler(self, method, sql, args):
        if self.fail_with is not None:
            return self.fail_with
        if "COUNT(*)" in sql:
            return [{"total": len(self.rows)}]
        if method == "fetch":
            return [dict(r) for r in self.rows]
        if method == "fetchval":
            if "WHERE name = $1" in sql:
                return next((r["id"] for r in self.rows if r["name"] == args[0]), None)
            return None
        if method == "fetchrow" and sql.startswith("INSERT INTO brands"):
            row = {"id": len(self.rows) + 1, "order": args[0], "name": args[1], "description": args[2]}
            self.rows.append(row)
            return row
        if method == "fetchrow":
            return next((dict(r) for r in self.rows if r["id"] == args[0]), None)
        if method == "execute" and sql.startswith("DELETE FROM brands"):
            before = len(self.rows)
            self.rows = [r for r in self.rows if r["id"] != args[0]]
            return f"DELETE {before - len(self.rows)}"
        return "OK"


@pytest.fixture
def brands():
    return BrandTable()


@pytest.fixture
def team_db(brands):
    return FakeDatabase(team_handler=brands.handler)


@pytest.mark.asyncio
async def test_list_brands_uses_team_pool(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.get("/api/team/acme/brands")

    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["brands"][0]["name"] == "Acme"
    pool = team_db.team_pools["team_acme"]
    assert pool.acquired == pool.released


@pytest.mark.asyncio
async def test_simultaneous_first_requests_open_one_pool(team_db, make_client):
    team_db.creation_delay = 0.02
    ctx = build_context(team_db)
    client = await make_client(ctx)

    responses = await asyncio.gather(
        client.get("/api/team/acme/brands"),
        client.get("/api/team/acme/brands/1"),
    )

    assert [r.status_code for r in responses] == [200, 200]
    assert team_db.team_pool_creations == 1


@pytest.mark.asyncio
async def test_read_after_write_is_not_served_from_cache(team_db, brands, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    assert (await client.get("/api/team/acme/brands")).json()["total"] == 1
    pool = team_db.team_pools["team_acme"]
    reads = len(pool.conn.calls)

    # A repeated read is a cache hit
    assert (await client.get("/api/team/acme/brands")).json()["total"] == 1
    assert len(pool.conn.calls) == reads

    resp = await client.post("/api/team/acme/brands", json={"name": "Globex"})
    assert resp.status_code == 201
    assert resp.json()["brand"]["name"] == "Globex"

    after = (await client.get("/api/team/acme/brands")).json()
    assert after["total"] == 2
    assert {b["name"] for b in after["brands"]} == {"Acme", "Globex"}


@pytest.mark.asyncio
async def test_transaction_commits_and_releases(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.delete("/api/team/acme/brands/1")

    assert resp.status_code == 200
    pool = team_db.team_pools["team_acme"]
    assert pool.conn.commits == 1
    assert pool.acquired == pool.released == 1


@pytest.mark.asyncio
async def test_business_error_response_rolls_back(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.post("/api/team/acme/brands", json={"name": "Acme"})

    assert resp.status_code == 409
    assert resp.json() == {
        "error": "Brand name already exists",
        "code": "DUPLICATE_ENTRY",
        "path": "/api/team/acme/brands",
    }
    pool = team_db.team_pools["team_acme"]
    assert pool.conn.rollbacks == 1
    assert pool.conn.commits == 0


@pytest.mark.asyncio
async def test_not_found_record(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.delete("/api/team/acme/brands/99")

    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_database_error_maps_to_taxonomy_status(team_db, brands, make_client):
    brands.fail_with = asyncpg.exceptions.UniqueViolationError("duplicate key value violates unique constraint")
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.post("/api/team/acme/shops", json={"unionid": "u-1", "nickname": "Shop"})

    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "DUPLICATE_ENTRY"
    assert body["path"] == "/api/team/acme/shops"
    assert body["error"] == DuplicateError.default_user_message
    assert ctx.errors.stats()["by_kind"] == {"duplicate": 1}
    assert team_db.team_pools["team_acme"].conn.rollbacks == 1


@pytest.mark.asyncio
async def test_deadlock_retried_then_503(team_db, brands, make_client):
    brands.fail_with = asyncpg.exceptions.DeadlockDetectedError("deadlock detected")
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.delete("/api/team/acme/brands/1")

    assert resp.status_code == 503
    assert resp.json()["code"] == "DB_DEADLOCK"
    pool = team_db.team_pools["team_acme"]
    assert pool.conn.begins == ctx.teams.db_config.max_retries
    assert pool.acquired == pool.released
    assert ctx.teams.registry.state("acme") == PoolState.READY


@pytest.mark.asyncio
async def test_unknown_team_is_404(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.get("/api/team/ghost/brands")

    assert resp.status_code == 404
    assert resp.json() == {"error": "Team not found", "code": "TEAM_NOT_FOUND", "path": "/api/team/ghost/brands"}


@pytest.mark.asyncio
async def test_blank_team_code_is_400(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.get("/api/team/%20/brands")

    assert resp.status_code == 400
    assert resp.json()["code"] == "TEAM_CODE_REQUIRED"
    assert team_db.system_pool.conn.calls == []


@pytest.mark.asyncio
async def test_uninitialized_team_database_is_409(team_db, make_client):
    team_db.team_pool_error = asyncpg.exceptions.InvalidCatalogNameError('database "team_acme" does not exist')
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.get("/api/team/acme/brands")

    assert resp.status_code == 409
    assert resp.json()["code"] == "TEAM_DATABASE_NOT_INITIALIZED"


@pytest.mark.asyncio
async def test_dropped_connection_evicts_team_pool(team_db, brands, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)
    assert (await client.get("/api/team/acme/brands/1")).status_code == 200

    brands.fail_with = asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed")
    resp = await client.get("/api/team/acme/brands/1")

    assert resp.status_code == 503
    assert resp.json()["code"] == "DB_CONNECTION_ERROR"
    assert ctx.teams.registry.state("acme") == PoolState.ABSENT

    brands.fail_with = None
    assert (await client.get("/api/team/acme/brands/1")).status_code == 200
    assert team_db.team_pool_creations == 2


@pytest.mark.asyncio
async def test_invalid_body_is_422(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    resp = await client.post("/api/team/acme/brands", json={"order": -1})

    assert resp.status_code == 422
    assert resp.json()["code"] == "HTTP_422"


@pytest.mark.asyncio
async def test_monitor_records_api_calls(team_db, make_client):
    ctx = build_context(team_db)
    client = await make_client(ctx)

    await client.get("/api/team/acme/brands")

    recent = ctx.monitor.get_recent_queries(10)
    assert any(r["kind"] == "api" and r["label"].startswith("TEAM API CALL [acme]") for r in recent)
    assert ctx.monitor.active_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [
        asyncpg.exceptions.DeadlockDetectedError("deadlock detected"),
        asyncpg.exceptions.LockNotAvailableError("could not obtain lock on row"),
    ],
)
async def test_exhausted_lock_contention_on_read_keeps_team_pool(team_db, brands, make_client, failure):
    ctx = build_context(team_db)
    client = await make_client(ctx)
    brands.fail_with = failure

    resp = await client.get("/api/team/acme/brands/1")

    assert resp.status_code == 503
    assert resp.json()["code"] == "DB_CONNECTION_ERROR"
    assert ctx.teams.registry.state("acme") == PoolState.READY
    assert team_db.team_pool_creations == 1

    brands.fail_with = None
    assert (await client.get("/api/team/acme/brands/1")).status_code == 200
    assert team_db.team_pool_creations == 1
