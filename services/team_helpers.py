"""Team request helpers shared by the team routes and the connection layer."""

import re
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from fastapi import HTTPException
from pydantic import BaseModel, ValidationError
from starlette.requests import Request

ModelT = TypeVar("ModelT", bound=BaseModel)

_TEAM_CODE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
_INVALID_TEAM_CODES = {"null", "none", "undefined"}


def normalize_team_code(candidate: Any) -> Optional[str]:
    """Return the stripped team code or None when input is missing/invalid."""
    if candidate is None:
        return None
    raw = str(candidate).strip()
    if not raw or raw.lower() in _INVALID_TEAM_CODES:
        return None
    if not _TEAM_CODE_RE.match(raw):
        return None
    return raw


def parse_pagination(request: Request, default_size: int = 10, max_size: int = 100) -> Tuple[int, int, int]:
    """Read ?page=&pageSize= and return (page, page_size, offset)."""
    try:
        page = max(1, int(request.query_params.get("page", "1")))
    except ValueError:
        page = 1
    try:
        page_size = int(request.query_params.get("pageSize", str(default_size)))
    except ValueError:
        page_size = default_size
    page_size = min(max(1, page_size), max_size)
    return page, page_size, (page - 1) * page_size


def parse_record_id(value: Any) -> Optional[int]:
    try:
        record_id = int(str(value))
    except (TypeError, ValueError):
        return None
    return record_id if record_id > 0 else None


async def parse_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Validate the JSON body against a pydantic model or raise 400/422."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False, include_input=False))


def build_update_clause(
    fields: Dict[str, Any],
    columns: Dict[str, str],
    start: int = 1,
) -> Tuple[str, List[Any]]:
    """Turn {field: value} into `col = $n, ...` plus positional args.

    Only fields listed in `columns` (field name -> quoted column) are used;
    `updated_at = NOW()` is always appended.
    """
    assignments: List[str] = []
    args: List[Any] = []
    for name, value in fields.items():
        column = columns.get(name)
        if column is None:
            continue
        args.append(value)
        assignments.append(f"{column} = ${start + len(args) - 1}")
    assignments.append("updated_at = NOW()")
    return ", ".join(assignments), args
