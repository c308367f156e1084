"""
Team Database Provisioner

One-shot, administrator-triggered setup of a team's physical database:

  provision(team)          admin credentials: database, login role, grants
  initialize_schema(team)  tenant credentials: tables and indexes

Both calls are idempotent. A failing step aborts the call with an error that
names the step; nothing already done is rolled back, re-running is the
recovery path.
"""
import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, List, Optional

import asyncpg

from config import DatabaseConfig, config
from database.errors import (
    DbErrorType,
    DbPermissionError,
    ProvisioningError,
    classify_error,
)
from database.team_connection import TeamDatabaseConfig
from database.team_schema import INDEX_DEFINITIONS, TABLE_DEFINITIONS, table_names

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def quote_identifier(name: str) -> str:
    """Validate and double-quote a database/role name for DDL."""
    if not name or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid database identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a string literal; DDL does not accept bind parameters."""
    if "\x00" in value:
        raise ValueError("String literal may not contain NUL bytes")
    return "'" + value.replace("'", "''") + "'"


class TeamDatabaseProvisioner:
    """Creates team databases, roles and schemas."""

    def __init__(self, db_config: Optional[DatabaseConfig] = None, *, connect: Optional[Connector] = None) -> None:
        self.db_config = db_config or config.database
        self._connect = connect or asyncpg.connect

    async def _step(self, step: str, team: TeamDatabaseConfig, operation: Awaitable[Any]) -> Any:
        try:
            return await operation
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc, database=team.db_name, team_code=team.team_code)
            message = f"Provisioning step '{step}' failed for team {team.team_code}: {exc}"
            logger.error(message)
            user_message = f"Team database initialization failed at step '{step}'"
            if error is not None and error.kind == DbErrorType.PERMISSION:
                raise DbPermissionError(
                    message,
                    user_message=user_message,
                    sqlstate=error.sqlstate,
                    database=team.db_name,
                    team_code=team.team_code,
                ) from exc
            raise ProvisioningError(
                message,
                step=step,
                user_message=user_message,
                sqlstate=getattr(error, "sqlstate", None),
                database=team.db_name,
                team_code=team.team_code,
            ) from exc

    def _ssl(self) -> Any:
        return "prefer" if self.db_config.ssl else False

    async def _admin_connection(self, team: TeamDatabaseConfig) -> Any:
        return await self._connect(
            host=team.db_host,
            port=team.port,
            user=self.db_config.admin_user,
            password=self.db_config.admin_password,
            database=self.db_config.admin_database,
            timeout=self.db_config.connect_timeout,
            ssl=self._ssl(),
        )

    async def _tenant_connection(self, team: TeamDatabaseConfig) -> Any:
        return await self._connect(
            host=team.db_host,
            port=team.port,
            user=team.db_username,
            password=team.db_password,
            database=team.db_name,
            timeout=self.db_config.connect_timeout,
            ssl=self._ssl(),
        )

    async def _ensure_database(self, conn: Any, team: TeamDatabaseConfig, db_ident: str) -> bool:
        exists = await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", team.db_name)
        if exists:
            logger.info("Database %s already exists", team.db_name)
            return False
        try:
            await conn.execute(f"CREATE DATABASE {db_ident} ENCODING 'UTF8' TEMPLATE template0")
        except asyncpg.exceptions.DuplicateDatabaseError:
            # Created concurrently by another provisioning call
            logger.info("Database %s created concurrently", team.db_name)
            return False
        logger.info("Created database %s", team.db_name)
        return True

    async def _ensure_role(self, conn: Any, team: TeamDatabaseConfig, role_ident: str) -> None:
        password = quote_literal(team.db_password)
        exists = await conn.fetchval("SELECT 1 FROM pg_roles WHERE rolname = $1", team.db_username)
        if not exists:
            try:
                await conn.execute(f"CREATE ROLE {role_ident} WITH LOGIN PASSWORD {password}")
                logger.info("Created role %s", team.db_username)
                return
            except asyncpg.exceptions.DuplicateObjectError:
                logger.info("Role %s created concurrently", team.db_username)
        # Existing role: reset to the team's current credentials
        await conn.execute(f"ALTER ROLE {role_ident} WITH LOGIN PASSWORD {password}")
        logger.info("Reset credentials of role %s", team.db_username)

    async def provision(self, team: TeamDatabaseConfig) -> None:
        """Create the team database and a login role scoped to it."""
        try:
            db_ident = quote_identifier(team.db_name)
            role_ident = quote_identifier(team.db_username)
        except ValueError as exc:
            raise ProvisioningError(
                f"Team {team.team_code} has invalid database settings: {exc}",
                step="validate",
                user_message="Team database settings are invalid",
                team_code=team.team_code,
            ) from exc

        logger.info("Provisioning database %s for team %s", team.db_name, team.team_code)
        conn = await self._step("connect as administrator", team, self._admin_connection(team))
        try:
            await self._step("create database", team, self._ensure_database(conn, team, db_ident))
            await self._step("create role", team, self._ensure_role(conn, team, role_ident))
            await self._step(
                "assign owner", team,
                conn.execute(f"ALTER DATABASE {db_ident} OWNER TO {role_ident}"),
            )
            await self._step(
                "revoke public access", team,
                conn.execute(f"REVOKE ALL ON DATABASE {db_ident} FROM PUBLIC"),
            )
            await self._step(
                "grant privileges", team,
                conn.execute(f"GRANT ALL PRIVILEGES ON DATABASE {db_ident} TO {role_ident}"),
            )
        finally:
            await conn.close()
        logger.info("✅ Provisioned database %s for team %s", team.db_name, team.team_code)

    async def initialize_schema(self, team: TeamDatabaseConfig) -> List[str]:
        """Apply the tenant schema as the tenant role; returns the table names."""
        conn = await self._step("connect as tenant", team, self._tenant_connection(team))
        try:
            async with conn.transaction():
                for table_name, ddl in TABLE_DEFINITIONS:
                    await self._step(f"create table {table_name}", team, conn.execute(ddl))
                for ddl in INDEX_DEFINITIONS:
                    await self._step("create index", team, conn.execute(ddl))
        finally:
            await conn.close()
        tables = table_names()
        logger.info("✅ Schema ready for team %s (%d tables)", team.team_code, len(tables))
        return tables
