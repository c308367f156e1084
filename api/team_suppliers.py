"""
Team supplier routes.

Routes (all under /api/team/{team_code}):
  GET    /suppliers          List suppliers (page, pageSize, keyword, status)
  GET    /suppliers/{id}     Fetch one supplier with its category ids
  POST   /suppliers          Create a supplier
  PUT    /suppliers/{id}     Partial update
  DELETE /suppliers/{id}     Delete; category links cascade
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.handlers import json_error, with_team_db, with_team_transaction
from models.team import RecordStatus, SupplierCreate, SupplierUpdate, update_columns
from services.team_helpers import build_update_clause, parse_body, parse_pagination, parse_record_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/team/{team_code}", tags=["team-suppliers"])

SUPPLIER_COLUMNS = 'id, "order", name, contact, status, level, type, remark, created_at, updated_at'
SUPPLIER_UPDATE_COLUMNS = {
    "order": '"order"',
    "name": "name",
    "contact": "contact",
    "status": "status",
    "level": "level",
    "type": "type",
    "remark": "remark",
}


def _encode_contact(contact: Optional[Dict[str, Any]]) -> Optional[str]:
    # jsonb parameters go over the wire as text
    return json.dumps(contact) if contact is not None else None


def _supplier(row: Any) -> Dict[str, Any]:
    supplier = dict(row)
    if isinstance(supplier.get("contact"), str):
        supplier["contact"] = json.loads(supplier["contact"])
    return supplier


def _parse_status(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(RecordStatus(int(raw)))
    except ValueError:
        return None


async def list_suppliers(request, params, pool):
    page, page_size, offset = parse_pagination(request)
    keyword = request.query_params.get("keyword", "").strip()
    status = _parse_status(request.query_params.get("status"))

    conditions, args = [], []
    if keyword:
        args.append(f"%{keyword}%")
        conditions.append(f"(name ILIKE ${len(args)} OR remark ILIKE ${len(args)})")
    if status is not None:
        args.append(status)
        conditions.append(f"status = ${len(args)}")
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    counted = await pool.fetch_cached(f"SELECT COUNT(*) AS total FROM suppliers {where}", *args)
    n = len(args)
    rows = await pool.fetch_cached(
        f'SELECT {SUPPLIER_COLUMNS} FROM suppliers {where} ORDER BY "order" ASC, id DESC '
        f"LIMIT ${n + 1} OFFSET ${n + 2}",
        *args, page_size, offset,
    )
    return {
        "total": counted[0]["total"] if counted else 0,
        "page": page,
        "pageSize": page_size,
        "suppliers": [_supplier(row) for row in rows],
    }


async def get_supplier(request, params, pool):
    supplier_id = parse_record_id(params.get("supplier_id"))
    if supplier_id is None:
        return json_error(request, 400, "Invalid supplier id", "INVALID_ID")
    row = await pool.fetchrow(f"SELECT {SUPPLIER_COLUMNS} FROM suppliers WHERE id = $1", supplier_id)
    if row is None:
        return json_error(request, 404, "Supplier not found", "NOT_FOUND")

    supplier = _supplier(row)
    links = await pool.fetch(
        "SELECT category_id FROM supplier_categories WHERE supplier_id = $1 ORDER BY category_id",
        supplier_id,
    )
    supplier["category_ids"] = [link["category_id"] for link in links]
    return supplier


async def create_supplier(request, params, conn):
    data = await parse_body(request, SupplierCreate)
    contact = data.contact.model_dump(mode="json") if data.contact is not None else None
    row = await conn.fetchrow(
        f'INSERT INTO suppliers ("order", name, contact, status, level, type, remark) '
        f"VALUES ($1, $2, $3, $4, $5, $6, $7) RETURNING {SUPPLIER_COLUMNS}",
        data.order, data.name, _encode_contact(contact), int(data.status),
        data.level, data.type, data.remark,
    )
    logger.info("Created supplier %s for team %s", row["id"], params["team_code"])
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder({"message": "Supplier created", "supplier": _supplier(row)}),
    )


async def update_supplier(request, params, conn):
    supplier_id = parse_record_id(params.get("supplier_id"))
    if supplier_id is None:
        return json_error(request, 400, "Invalid supplier id", "INVALID_ID")
    data = await parse_body(request, SupplierUpdate)
    fields = update_columns(data)
    if "contact" in fields:
        fields["contact"] = _encode_contact(fields["contact"])

    assignments, args = build_update_clause(fields, SUPPLIER_UPDATE_COLUMNS, start=2)
    row = await conn.fetchrow(
        f"UPDATE suppliers SET {assignments} WHERE id = $1 RETURNING {SUPPLIER_COLUMNS}",
        supplier_id, *args,
    )
    if row is None:
        return json_error(request, 404, "Supplier not found", "NOT_FOUND")
    return {"message": "Supplier updated", "supplier": _supplier(row)}


async def delete_supplier(request, params, conn):
    supplier_id = parse_record_id(params.get("supplier_id"))
    if supplier_id is None:
        return json_error(request, 400, "Invalid supplier id", "INVALID_ID")
    status = await conn.execute("DELETE FROM suppliers WHERE id = $1", supplier_id)
    if status == "DELETE 0":
        return json_error(request, 404, "Supplier not found", "NOT_FOUND")
    return {"message": "Supplier deleted", "id": supplier_id}


router.add_api_route("/suppliers", with_team_db(list_suppliers), methods=["GET"])
router.add_api_route("/suppliers/{supplier_id}", with_team_db(get_supplier), methods=["GET"])
router.add_api_route("/suppliers", with_team_transaction(create_supplier), methods=["POST"])
router.add_api_route("/suppliers/{supplier_id}", with_team_transaction(update_supplier), methods=["PUT"])
router.add_api_route("/suppliers/{supplier_id}", with_team_transaction(delete_supplier), methods=["DELETE"])
