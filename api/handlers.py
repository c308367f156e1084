"""
Route wrappers for database-backed endpoints.

Each wrapper takes a handler `handler(request, params, pool_or_conn)` and
returns a FastAPI endpoint that:
  - resolves the pool (named system pool or the team's pool)
  - runs the handler, inside a transaction for the *_transaction variants
  - records the call in the QueryMonitor
  - clears the QueryCache after a successful non-read request
  - maps DbError to `{error, code, path}` with the taxonomy status code

Usage:
    async def list_brands(request, params, pool): ...
    router.add_api_route("/brands", with_team_db(list_brands), methods=["GET"])
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.responses import Response

from database.context import DatabaseContext, get_db_context
from database.errors import DbError, classify_error
from database.monitored_pool import MonitoredPool

logger = logging.getLogger(__name__)

Handler = Callable[[Request, Dict[str, Any], Any], Awaitable[Any]]
Endpoint = Callable[[Request], Awaitable[Response]]

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def error_response(error: DbError, path: str) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.user_message, "code": error.code, "path": path},
    )


def internal_error_response(path: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR", "path": path},
    )


def to_response(result: Any) -> Response:
    if isinstance(result, Response):
        return result
    return JSONResponse(content=jsonable_encoder(result))


class _RollbackWithResponse(Exception):
    """Raised inside a transaction when the handler answered with an error status."""

    def __init__(self, response: Response) -> None:
        super().__init__(response.status_code)
        self.response = response


def _build_endpoint(
    handler: Handler,
    *,
    team_scoped: bool,
    transactional: bool,
    database_name: Optional[str] = None,
) -> Endpoint:
    async def endpoint(request: Request) -> Response:
        ctx: DatabaseContext = get_db_context(request)
        params = dict(request.path_params)
        path = request.url.path
        team_code = (params.get("team_code") or "").strip() if team_scoped else None

        if team_scoped and not team_code:
            return JSONResponse(
                status_code=400,
                content={"error": "Team code is required", "code": "TEAM_CODE_REQUIRED", "path": path},
            )

        if team_scoped:
            db_key = f"team_{team_code}"
            label = f"TEAM TRANSACTION [{team_code}]" if transactional else f"TEAM API CALL [{team_code}]"
        else:
            db_key = database_name or ctx.connections.default_database
            label = "TRANSACTION API CALL" if transactional else "API CALL"
        label = f"{label} {request.method} {path}"

        token = ctx.monitor.start_query(
            label, params, db_key, path, kind="transaction" if transactional else "api",
        )
        try:
            if transactional:
                async def work(conn: Any) -> Response:
                    response = to_response(await handler(request, params, conn))
                    if response.status_code >= 400:
                        raise _RollbackWithResponse(response)
                    return response

                if team_scoped:
                    retries = ctx.teams.db_config.max_retries
                    response = await ctx.teams.team_transaction(team_code, work, max_retries=retries)
                else:
                    retries = ctx.connections.db_config.max_retries
                    response = await ctx.connections.transaction(database_name, work, max_retries=retries)
            else:
                if team_scoped:
                    pool = await ctx.teams.get_team_pool_by_code(team_code)
                    max_retries = ctx.teams.db_config.team_max_retries
                    retry_delay = ctx.teams.db_config.team_retry_delay
                else:
                    pool = await ctx.connections.get_pool(database_name)
                    max_retries = ctx.connections.db_config.max_retries
                    retry_delay = ctx.connections.db_config.retry_delay
                scoped = MonitoredPool(
                    pool,
                    db_key=db_key,
                    monitor=ctx.monitor,
                    cache=ctx.cache,
                    path=path,
                    max_retries=max_retries,
                    retry_delay=retry_delay,
                    team_code=team_code,
                )
                response = to_response(await handler(request, params, scoped))

        except _RollbackWithResponse as rollback:
            ctx.monitor.end_query(token, error=f"HTTP {rollback.response.status_code}")
            return rollback.response
        except HTTPException as exc:
            ctx.monitor.end_query(token, error=f"HTTP {exc.status_code}")
            raise
        except asyncio.CancelledError:
            ctx.monitor.end_query(token, error="cancelled")
            raise
        except Exception as exc:
            ctx.monitor.end_query(token, error=exc)
            error = classify_error(exc, database=db_key, team_code=team_code)
            if error is None:
                logger.error("Unhandled error in %s %s", request.method, path, exc_info=True)
                return internal_error_response(path)

            ctx.errors.record(error, path)
            # team_transaction and MonitoredPool already charged the pool itself
            if team_scoped and not transactional:
                ctx.teams.handle_error(team_code, error)
            elif not team_scoped and not transactional and error.is_connection_failure:
                ctx.connections.evict(database_name)
            log = logger.error if error.status_code >= 500 else logger.warning
            log("%s %s failed with %s: %s", request.method, path, error.code, error.message)
            return error_response(error, path)

        ctx.monitor.end_query(token)
        if request.method not in READ_METHODS and response.status_code < 400:
            ctx.cache.clear()
        return response

    endpoint.__name__ = getattr(handler, "__name__", "endpoint")
    endpoint.__doc__ = handler.__doc__
    return endpoint


def with_db(handler: Handler, database_name: Optional[str] = None) -> Endpoint:
    """Handler receives a MonitoredPool on a named pool (system database by default)."""
    return _build_endpoint(handler, team_scoped=False, transactional=False, database_name=database_name)


def with_transaction(handler: Handler, database_name: Optional[str] = None) -> Endpoint:
    """Handler receives a connection inside a transaction on a named pool."""
    return _build_endpoint(handler, team_scoped=False, transactional=True, database_name=database_name)


def with_team_db(handler: Handler) -> Endpoint:
    """Handler receives a MonitoredPool on the team's database."""
    return _build_endpoint(handler, team_scoped=True, transactional=False)


def with_team_transaction(handler: Handler) -> Endpoint:
    """Handler receives a connection inside a transaction on the team's database."""
    return _build_endpoint(handler, team_scoped=True, transactional=True)


def json_error(request: Request, status_code: int, message: str, code: str) -> JSONResponse:
    """Business-level error in the same shape as database errors."""
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code, "path": request.url.path},
    )
