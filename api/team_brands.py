"""
Team brand routes.

Routes (all under /api/team/{team_code}):
  GET    /brands          List brands (page, pageSize, keyword)
  GET    /brands/{id}     Fetch one brand
  POST   /brands          Create a brand; names are unique per team
  PUT    /brands/{id}     Partial update
  DELETE /brands/{id}     Delete; products keep a NULL brand
"""
import logging

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.handlers import json_error, with_team_db, with_team_transaction
from models.team import BrandCreate, BrandUpdate, update_columns
from services.team_helpers import build_update_clause, parse_body, parse_pagination, parse_record_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team/{team_code}", tags=["team-brands"])

BRAND_COLUMNS = 'id, "order", name, description, created_at, updated_at'
BRAND_UPDATE_COLUMNS = {"order": '"order"', "name": "name", "description": "description"}


async def list_brands(request, params, pool):
    page, page_size, offset = parse_pagination(request)
    keyword = request.query_params.get("keyword", "").strip()

    where, args = "", []
    if keyword:
        where = "WHERE name ILIKE $1 OR description ILIKE $1"
        args.append(f"%{keyword}%")

    counted = await pool.fetch_cached(f"SELECT COUNT(*) AS total FROM brands {where}", *args)
    n = len(args)
    rows = await pool.fetch_cached(
        f'SELECT {BRAND_COLUMNS} FROM brands {where} ORDER BY "order" ASC, id ASC '
        f"LIMIT ${n + 1} OFFSET ${n + 2}",
        *args, page_size, offset,
    )
    return {
        "total": counted[0]["total"] if counted else 0,
        "page": page,
        "pageSize": page_size,
        "brands": rows,
    }


async def get_brand(request, params, pool):
    brand_id = parse_record_id(params.get("brand_id"))
    if brand_id is None:
        return json_error(request, 400, "Invalid brand id", "INVALID_ID")
    row = await pool.fetchrow(f"SELECT {BRAND_COLUMNS} FROM brands WHERE id = $1", brand_id)
    if row is None:
        return json_error(request, 404, "Brand not found", "NOT_FOUND")
    return dict(row)


async def create_brand(request, params, conn):
    data = await parse_body(request, BrandCreate)
    existing = await conn.fetchval("SELECT id FROM brands WHERE name = $1", data.name)
    if existing is not None:
        return json_error(request, 409, "Brand name already exists", "DUPLICATE_ENTRY")

    row = await conn.fetchrow(
        f'INSERT INTO brands ("order", name, description) VALUES ($1, $2, $3) RETURNING {BRAND_COLUMNS}',
        data.order, data.name, data.description,
    )
    logger.info("Created brand %s for team %s", row["id"], params["team_code"])
    return JSONResponse(status_code=201, content=jsonable_encoder({"message": "Brand created", "brand": dict(row)}))


async def update_brand(request, params, conn):
    brand_id = parse_record_id(params.get("brand_id"))
    if brand_id is None:
        return json_error(request, 400, "Invalid brand id", "INVALID_ID")
    data = await parse_body(request, BrandUpdate)
    fields = update_columns(data)

    if await conn.fetchval("SELECT id FROM brands WHERE id = $1 FOR UPDATE", brand_id) is None:
        return json_error(request, 404, "Brand not found", "NOT_FOUND")
    if fields.get("name") is not None:
        clash = await conn.fetchval("SELECT id FROM brands WHERE name = $1 AND id <> $2", fields["name"], brand_id)
        if clash is not None:
            return json_error(request, 409, "Brand name already exists", "DUPLICATE_ENTRY")

    assignments, args = build_update_clause(fields, BRAND_UPDATE_COLUMNS, start=2)
    row = await conn.fetchrow(
        f"UPDATE brands SET {assignments} WHERE id = $1 RETURNING {BRAND_COLUMNS}",
        brand_id, *args,
    )
    return {"message": "Brand updated", "brand": dict(row)}


async def delete_brand(request, params, conn):
    brand_id = parse_record_id(params.get("brand_id"))
    if brand_id is None:
        return json_error(request, 400, "Invalid brand id", "INVALID_ID")
    status = await conn.execute("DELETE FROM brands WHERE id = $1", brand_id)
    if status == "DELETE 0":
        return json_error(request, 404, "Brand not found", "NOT_FOUND")
    return {"message": "Brand deleted", "id": brand_id}


router.add_api_route("/brands", with_team_db(list_brands), methods=["GET"])
router.add_api_route("/brands/{brand_id}", with_team_db(get_brand), methods=["GET"])
router.add_api_route("/brands", with_team_transaction(create_brand), methods=["POST"])
router.add_api_route("/brands/{brand_id}", with_team_transaction(update_brand), methods=["PUT"])
router.add_api_route("/brands/{brand_id}", with_team_transaction(delete_brand), methods=["DELETE"])
