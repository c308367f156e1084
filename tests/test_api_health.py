"""
Tests for api/health.py and services/db_health.py.
"""
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import app as service_app  # noqa: E402
from config import config  # noqa: E402
from conftest import build_context  # noqa: E402
from database.errors import DuplicateError  # noqa: E402
from services.db_health import check_database_health  # noqa: E402


@pytest.mark.asyncio
async def test_health_reports_healthy_with_system_pool(fake_db, make_client):
    ctx = build_context(fake_db)
    await ctx.init()
    client = await make_client(ctx)

    resp = await client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["service"] == "Team Database Service"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_is_critical_without_system_pool(fake_db, make_client):
    async def unreachable(_pool_config):
        raise ConnectionRefusedError("connection refused")

    ctx = build_context(fake_db)
    ctx.connections._pool_factory = unreachable
    await ctx.init()
    client = await make_client(ctx)

    resp = await client.get("/health")

    assert resp.status_code == 503
    assert resp.json()["status"] == "critical"
    assert ctx.system_ready is False
    assert "connection refused" in ctx.init_error


@pytest.mark.asyncio
async def test_recorded_errors_degrade_health(fake_db):
    ctx = build_context(fake_db)
    await ctx.init()
    ctx.errors.record(DuplicateError("dup"), "/api/team/acme/brands")

    report = await check_database_health(ctx)

    assert report["status"] == "degraded"
    assert report["details"]["error_stats"]["by_kind"] == {"duplicate": 1}


@pytest.mark.asyncio
async def test_debug_endpoint_returns_details(fake_db, make_client):
    ctx = build_context(fake_db)
    await ctx.init()
    await ctx.teams.get_team_pool_by_code("acme")
    client = await make_client(ctx)

    resp = await client.get("/api/debug/db-health")

    assert resp.status_code == 200
    details = resp.json()["details"]
    assert details["system_database"]["ready"] is True
    assert details["team_connections"]["active_pools"] == 1
    assert "hit_rate" in details["cache_stats"]
    assert "total_queries" in details["query_stats"]


@pytest.mark.asyncio
async def test_shutdown_closes_all_pools(fake_db):
    ctx = build_context(fake_db)
    await ctx.init()
    team_pool = await ctx.teams.get_team_pool_by_code("acme")

    await ctx.shutdown()

    assert team_pool.closed is True
    assert fake_db.system_pool.closed is True
    assert len(ctx.teams.registry) == 0


@pytest.mark.asyncio
async def test_unhandled_error_body_stays_generic_in_dev_mode(fake_db, monkeypatch):
    monkeypatch.setattr(config.security, "dev_mode", True)
    application = service_app.create_app(db_context=build_context(fake_db))

    async def explode():
        raise RuntimeError("password=hunter2 leaked from a stack frame")

    application.add_api_route("/explode", explode)
    transport = httpx.ASGITransport(app=application, raise_app_exceptions=False)

    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/explode")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "code": "INTERNAL_ERROR", "path": "/explode"}
