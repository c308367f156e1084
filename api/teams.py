"""
Team database administration endpoints.

Only the team's owner may initialize or inspect the team database.
"""
import logging
from typing import Any, Dict, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.handlers import error_response
from auth.jwt import AuthenticatedUser, require_user
from database.context import DatabaseContext, get_db_context
from database.errors import DbError, TeamNotFoundError
from database.team_connection import TeamDatabaseConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams", tags=["teams"])


class InitDatabaseResponse(BaseModel):
    success: bool
    message: str


class DatabaseStatusResponse(BaseModel):
    team_code: str
    connected: bool
    pool: Dict[str, Any] = {}


async def _load_owned_team(
    ctx: DatabaseContext,
    team_code: str,
    user: AuthenticatedUser,
    path: str,
) -> Union[TeamDatabaseConfig, JSONResponse]:
    team = await ctx.teams.get_team_config(team_code)
    if team is None:
        raise TeamNotFoundError(f"Team {team_code} not found", team_code=team_code)
    if str(team.owner_id) != str(user.id):
        logger.warning("User %s is not the owner of team %s", user.id, team_code)
        return JSONResponse(
            status_code=403,
            content={
                "error": "Only the team owner can manage the team database",
                "code": "NOT_TEAM_OWNER",
                "path": path,
            },
        )
    return team


@router.post("/{team_code}/init-database", response_model=InitDatabaseResponse)
async def init_team_database(
    team_code: str,
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
    ctx: DatabaseContext = Depends(get_db_context),
):
    """Create the team's database, role and schema."""
    path = request.url.path
    try:
        team = await _load_owned_team(ctx, team_code, user, path)
        if isinstance(team, JSONResponse):
            return team

        logger.info("User %s initializing database for team %s", user.id, team_code)
        await ctx.provisioner.provision(team)
        tables = await ctx.provisioner.initialize_schema(team)
    except DbError as error:
        ctx.errors.record(error, path)
        logger.error("Team %s database initialization failed: %s", team_code, error.message)
        return error_response(error, path)

    # Credentials may have been reset; drop any pool opened with the old ones
    await ctx.teams.close_team_pool(team.team_code)
    return InitDatabaseResponse(
        success=True,
        message=f"Team database {team.db_name} initialized ({len(tables)} tables)",
    )


@router.get("/{team_code}/database/status", response_model=DatabaseStatusResponse)
async def team_database_status(
    team_code: str,
    request: Request,
    user: AuthenticatedUser = Depends(require_user),
    ctx: DatabaseContext = Depends(get_db_context),
):
    path = request.url.path
    try:
        team = await _load_owned_team(ctx, team_code, user, path)
        if isinstance(team, JSONResponse):
            return team
    except DbError as error:
        ctx.errors.record(error, path)
        return error_response(error, path)

    connected = await ctx.teams.test_team_connection(team.team_code)
    pool = ctx.teams.registry.get(team.team_code)
    return DatabaseStatusResponse(
        team_code=team.team_code,
        connected=connected,
        pool=pool.stats() if pool is not None else {},
    )
