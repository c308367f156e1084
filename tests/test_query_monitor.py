"""
Tests for database/query_monitor.py and the monitoring done by MonitoredPool.
"""
import logging
import sys
from pathlib import Path

import asyncpg
import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from conftest import FakePool  # noqa: E402
from database.errors import DbConnectionError, DuplicateError  # noqa: E402
from database.monitored_pool import MonitoredPool  # noqa: E402
from database.query_cache import QueryCache  # noqa: E402
from database.query_monitor import QueryMonitor  # noqa: E402


def test_start_and_end_track_active_queries():
    monitor = QueryMonitor()
    token = monitor.start_query("SELECT 1", (1,), "saas_master", "/health")

    assert monitor.is_active(token)
    assert monitor.active_count == 1

    record = monitor.end_query(token, affected_rows=1)

    assert not monitor.is_active(token)
    assert record.duration_ms >= 0
    assert record.affected_rows == 1
    assert monitor.get_stats()["total_queries"] == 1


def test_unknown_token_is_ignored():
    monitor = QueryMonitor()
    assert monitor.end_query("missing") is None
    assert monitor.get_stats()["total_queries"] == 0


def test_slow_query_logs_warning(caplog):
    monitor = QueryMonitor(slow_query_ms=-1)
    token = monitor.start_query("SELECT pg_sleep(1)", None, "team_acme", "/api/team/acme/brands")

    with caplog.at_level(logging.WARNING, logger="database.query_monitor"):
        monitor.end_query(token)

    assert "Slow query" in caplog.text
    assert "team_acme" in caplog.text
    assert monitor.get_stats()["slow_queries"] == 1
    assert monitor.get_slow_queries()[0]["path"] == "/api/team/acme/brands"


def test_thresholds_differ_per_kind():
    monitor = QueryMonitor(slow_query_ms=-1, slow_api_ms=60_000)
    api_token = monitor.start_query("API CALL", kind="api")
    query_token = monitor.start_query("SELECT 1", kind="query")

    assert monitor.end_query(api_token).slow is False
    assert monitor.end_query(query_token).slow is True


def test_errors_are_counted_and_params_truncated():
    monitor = QueryMonitor()
    token = monitor.start_query("INSERT", ["x" * 500] + list(range(20)))
    record = monitor.end_query(token, error=ValueError("bad"))

    assert record.error == "bad"
    assert len(record.params) == 10
    assert len(record.params[0]) == 100
    assert monitor.get_stats()["total_errors"] == 1


@pytest.mark.asyncio
async def test_monitored_pool_closes_entry_on_error():
    pool = FakePool(handler=lambda *_: asyncpg.exceptions.UniqueViolationError("duplicate key"))
    monitor = QueryMonitor()
    scoped = MonitoredPool(pool, db_key="team_acme", monitor=monitor, cache=QueryCache(), retry_delay=0)

    with pytest.raises(DuplicateError):
        await scoped.execute("INSERT INTO shops (unionid) VALUES ($1)", "u1")

    assert monitor.active_count == 0
    assert monitor.get_stats()["total_errors"] == 1
    assert len(pool.errors) == 1
    assert len(pool.conn.calls) == 1


@pytest.mark.asyncio
async def test_monitored_pool_records_affected_rows():
    pool = FakePool(handler=lambda *_: "UPDATE 3")
    monitor = QueryMonitor()
    scoped = MonitoredPool(pool, db_key="team_acme", monitor=monitor, cache=QueryCache())

    assert await scoped.execute("UPDATE shops SET status = 0") == "UPDATE 3"
    assert monitor.get_recent_queries(1)[0]["affected_rows"] == 3


@pytest.mark.asyncio
async def test_monitored_pool_exhaustion_is_connection_error():
    pool = FakePool(handler=lambda *_: asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed"))
    scoped = MonitoredPool(
        pool, db_key="team_acme", monitor=QueryMonitor(), cache=QueryCache(), max_retries=2, retry_delay=0,
    )

    with pytest.raises(DbConnectionError):
        await scoped.fetch("SELECT 1")

    assert len(pool.conn.calls) == 2
    assert pool.acquired == pool.released == 2


@pytest.mark.asyncio
async def test_monitored_pool_transaction():
    pool = FakePool()
    monitor = QueryMonitor()
    scoped = MonitoredPool(pool, db_key="team_acme", monitor=monitor, cache=QueryCache())

    async def work(conn):
        await conn.execute("DELETE FROM brands WHERE id = $1", 1)
        return "ok"

    assert await scoped.transaction(work) == "ok"
    assert pool.conn.commits == 1
    assert monitor.get_recent_queries(1)[0]["kind"] == "transaction"


def test_reset_clears_history_but_keeps_active_queries():
    monitor = QueryMonitor(slow_query_ms=-1)
    monitor.end_query(monitor.start_query("SELECT 1", None, "saas_master", "/health"))
    running = monitor.start_query("SELECT 2", None, "saas_master", "/health")

    monitor.reset()

    assert monitor.get_stats()["total_queries"] == 0
    assert monitor.get_slow_queries() == []
    assert monitor.get_recent_queries() == []
    assert monitor.is_active(running)
