"""
Team shop routes.

Routes (all under /api/team/{team_code}):
  GET    /shops          List shops (page, pageSize, keyword, status)
  GET    /shops/{id}     Fetch one shop
  POST   /shops          Create a shop; a repeated unionid answers 409
  PUT    /shops/{id}     Partial update
  DELETE /shops/{id}     Delete; follower history cascades
"""
import logging

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.handlers import json_error, with_team_db, with_team_transaction
from models.team import RecordStatus, ShopCreate, ShopUpdate, update_columns
from services.team_helpers import build_update_clause, parse_body, parse_pagination, parse_record_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team/{team_code}", tags=["team-shops"])

SHOP_FIELDS = ("unionid", "openid", "account_no", "wechat", "avatar", "nickname", "phone", "status", "remark")
SHOP_COLUMNS = "id, " + ", ".join(SHOP_FIELDS) + ", created_at, updated_at"
SHOP_UPDATE_COLUMNS = {field: field for field in SHOP_FIELDS}


async def list_shops(request, params, pool):
    page, page_size, offset = parse_pagination(request)
    keyword = request.query_params.get("keyword", "").strip()
    raw_status = request.query_params.get("status")

    conditions, args = [], []
    if keyword:
        args.append(f"%{keyword}%")
        n = len(args)
        conditions.append(f"(nickname ILIKE ${n} OR wechat ILIKE ${n} OR account_no ILIKE ${n})")
    if raw_status not in (None, ""):
        try:
            status = RecordStatus(int(raw_status))
        except ValueError:
            return json_error(request, 400, "Invalid status filter", "INVALID_STATUS")
        args.append(int(status))
        conditions.append(f"status = ${len(args)}")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    counted = await pool.fetch_cached(f"SELECT COUNT(*) AS total FROM shops {where}", *args)
    n = len(args)
    rows = await pool.fetch_cached(
        f"SELECT {SHOP_COLUMNS} FROM shops {where} ORDER BY id DESC LIMIT ${n + 1} OFFSET ${n + 2}",
        *args, page_size, offset,
    )
    return {
        "total": counted[0]["total"] if counted else 0,
        "page": page,
        "pageSize": page_size,
        "shops": rows,
    }


async def get_shop(request, params, pool):
    shop_id = parse_record_id(params.get("shop_id"))
    if shop_id is None:
        return json_error(request, 400, "Invalid shop id", "INVALID_ID")
    row = await pool.fetchrow(f"SELECT {SHOP_COLUMNS} FROM shops WHERE id = $1", shop_id)
    if row is None:
        return json_error(request, 404, "Shop not found", "NOT_FOUND")
    return dict(row)


async def create_shop(request, params, conn):
    data = await parse_body(request, ShopCreate)
    values = data.model_dump(mode="json")
    placeholders = ", ".join(f"${i}" for i in range(1, len(SHOP_FIELDS) + 1))
    # unionid is UNIQUE; a clash surfaces as DuplicateError (409)
    row = await conn.fetchrow(
        f"INSERT INTO shops ({', '.join(SHOP_FIELDS)}) VALUES ({placeholders}) RETURNING {SHOP_COLUMNS}",
        *[values[field] for field in SHOP_FIELDS],
    )
    logger.info("Created shop %s for team %s", row["id"], params["team_code"])
    return JSONResponse(status_code=201, content=jsonable_encoder({"message": "Shop created", "shop": dict(row)}))


async def update_shop(request, params, conn):
    shop_id = parse_record_id(params.get("shop_id"))
    if shop_id is None:
        return json_error(request, 400, "Invalid shop id", "INVALID_ID")
    data = await parse_body(request, ShopUpdate)

    assignments, args = build_update_clause(update_columns(data), SHOP_UPDATE_COLUMNS, start=2)
    row = await conn.fetchrow(
        f"UPDATE shops SET {assignments} WHERE id = $1 RETURNING {SHOP_COLUMNS}",
        shop_id, *args,
    )
    if row is None:
        return json_error(request, 404, "Shop not found", "NOT_FOUND")
    return {"message": "Shop updated", "shop": dict(row)}


async def delete_shop(request, params, conn):
    shop_id = parse_record_id(params.get("shop_id"))
    if shop_id is None:
        return json_error(request, 400, "Invalid shop id", "INVALID_ID")
    status = await conn.execute("DELETE FROM shops WHERE id = $1", shop_id)
    if status == "DELETE 0":
        return json_error(request, 404, "Shop not found", "NOT_FOUND")
    return {"message": "Shop deleted", "id": shop_id}


router.add_api_route("/shops", with_team_db(list_shops), methods=["GET"])
router.add_api_route("/shops/{shop_id}", with_team_db(get_shop), methods=["GET"])
router.add_api_route("/shops", with_team_transaction(create_shop), methods=["POST"])
router.add_api_route("/shops/{shop_id}", with_team_transaction(update_shop), methods=["PUT"])
router.add_api_route("/shops/{shop_id}", with_team_transaction(delete_shop), methods=["DELETE"])
