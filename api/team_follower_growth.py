"""
Shop follower growth routes.

Routes (all under /api/team/{team_code}):
  GET    /shop-follower-growth        Rows between startDate and endDate, optional shopId
  POST   /shop-follower-growth        Upsert one day for one shop
  DELETE /shop-follower-growth/{id}   Delete one row
"""
import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter

from api.handlers import json_error, with_team_db, with_team_transaction
from models.team import FollowerGrowthEntry
from services.team_helpers import parse_body, parse_record_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team/{team_code}", tags=["team-follower-growth"])

GROWTH_COLUMNS = "id, shop_id, date, total, deducted, daily_increase, created_at, updated_at"
DEFAULT_RANGE_DAYS = 30


def _parse_date(raw: Optional[str]) -> Optional[dt.date]:
    if not raw:
        return None
    try:
        return dt.date.fromisoformat(raw)
    except ValueError:
        return None


async def list_follower_growth(request, params, pool):
    query = request.query_params
    end = _parse_date(query.get("endDate")) if query.get("endDate") else dt.date.today()
    start = _parse_date(query.get("startDate")) if query.get("startDate") else None
    if end is None or (query.get("startDate") and start is None):
        return json_error(request, 400, "Dates must use YYYY-MM-DD", "INVALID_DATE")
    if start is None:
        start = end - dt.timedelta(days=DEFAULT_RANGE_DAYS)
    if start > end:
        return json_error(request, 400, "startDate must not be after endDate", "INVALID_DATE_RANGE")

    args = [start, end]
    where = "WHERE date BETWEEN $1 AND $2"
    if query.get("shopId"):
        shop_id = parse_record_id(query.get("shopId"))
        if shop_id is None:
            return json_error(request, 400, "Invalid shop id", "INVALID_ID")
        args.append(shop_id)
        where += " AND shop_id = $3"

    rows = await pool.fetch_cached(
        f"SELECT {GROWTH_COLUMNS} FROM shop_follower_growth {where} ORDER BY date ASC, shop_id ASC",
        *args,
    )
    return {"startDate": start.isoformat(), "endDate": end.isoformat(), "records": rows}


async def upsert_follower_growth(request, params, conn):
    entry = await parse_body(request, FollowerGrowthEntry)
    # unknown shop_id surfaces as ForeignKeyError (422)
    row = await conn.fetchrow(
        f"""
        INSERT INTO shop_follower_growth (shop_id, date, total, deducted, daily_increase)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (shop_id, date) DO UPDATE
            SET total = EXCLUDED.total,
                deducted = EXCLUDED.deducted,
                daily_increase = EXCLUDED.daily_increase,
                updated_at = NOW()
        RETURNING {GROWTH_COLUMNS}
        """,
        entry.shop_id, entry.date, entry.total, entry.deducted, entry.daily_increase,
    )
    return {"message": "Follower growth saved", "record": dict(row)}


async def delete_follower_growth(request, params, conn):
    record_id = parse_record_id(params.get("record_id"))
    if record_id is None:
        return json_error(request, 400, "Invalid record id", "INVALID_ID")
    status = await conn.execute("DELETE FROM shop_follower_growth WHERE id = $1", record_id)
    if status == "DELETE 0":
        return json_error(request, 404, "Record not found", "NOT_FOUND")
    return {"message": "Follower growth deleted", "id": record_id}


router.add_api_route("/shop-follower-growth", with_team_db(list_follower_growth), methods=["GET"])
router.add_api_route("/shop-follower-growth", with_team_transaction(upsert_follower_growth), methods=["POST"])
router.add_api_route(
    "/shop-follower-growth/{record_id}", with_team_transaction(delete_follower_growth), methods=["DELETE"],
)
