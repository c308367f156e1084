"""
Team Connection Manager

Resolves a team code to the team's own database pool. Connection parameters
come from the `teams` table in the system database; the resulting pool is
cached per team code for the life of the process and evicted only when the
team database becomes unreachable.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config import DatabaseConfig, config
from database.async_connection import (
    AsyncDatabasePool,
    ConnectionManager,
    PoolConfig,
    PoolCreator,
    TransactionWork,
    create_pool,
    run_transaction,
)
from database.errors import DbError, TeamNotFoundError, classify_error
from database.pool_registry import PoolRegistry
from services.team_helpers import normalize_team_code

logger = logging.getLogger(__name__)

TEAM_LOOKUP_SQL = """
    SELECT id, team_code, name, db_host, db_name, db_username, db_password,
           owner_id, workspace_id
    FROM teams
    WHERE team_code = $1 AND status = 1
"""


@dataclass
class TeamDatabaseConfig:
    """Connection parameters of one team's database"""
    team_id: Any
    team_code: str
    db_host: str
    db_name: str
    db_username: str
    db_password: str = field(repr=False)
    port: int = 5432
    owner_id: Any = None
    workspace_id: Any = None
    name: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any, default_port: int = 5432) -> "TeamDatabaseConfig":
        row = dict(record)
        host = row["db_host"] or "localhost"
        port = default_port
        # db_host may carry an explicit port: "10.0.0.5:6432"
        if ":" in host:
            host_part, _, port_part = host.rpartition(":")
            if port_part.isdigit():
                host, port = host_part, int(port_part)
        return cls(
            team_id=row.get("id"),
            team_code=row["team_code"],
            db_host=host,
            db_name=row["db_name"],
            db_username=row["db_username"],
            db_password=row["db_password"],
            port=port,
            owner_id=row.get("owner_id"),
            workspace_id=row.get("workspace_id"),
            name=row.get("name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "team_code": self.team_code,
            "db_host": self.db_host,
            "port": self.port,
            "db_name": self.db_name,
            "db_username": self.db_username,
            "db_password": "***REDACTED***",
        }


class TeamConnectionManager:
    """Maps team codes to per-team pools."""

    def __init__(
        self,
        connections: ConnectionManager,
        db_config: Optional[DatabaseConfig] = None,
        *,
        pool_factory: Optional[PoolCreator] = None,
        registry: Optional[PoolRegistry] = None,
    ) -> None:
        self.connections = connections
        self.db_config = db_config or config.database
        self._pool_factory = pool_factory or create_pool
        self.registry = registry or PoolRegistry("teams")
        self._last_errors: Dict[str, str] = {}

    async def get_team_config(self, team_code: str) -> Optional[TeamDatabaseConfig]:
        """Look up an active team's database parameters in the system database."""
        code = normalize_team_code(team_code)
        if code is None:
            return None
        record = await self.connections.fetchrow(TEAM_LOOKUP_SQL, code)
        if record is None:
            return None
        return TeamDatabaseConfig.from_record(record, default_port=self.db_config.port)

    def pool_config(self, team: TeamDatabaseConfig) -> PoolConfig:
        return PoolConfig(
            host=team.db_host,
            port=team.port,
            user=team.db_username,
            password=team.db_password,
            database=team.db_name,
            min_size=self.db_config.pool_min_size,
            max_size=self.db_config.team_pool_max_size,
            command_timeout=self.db_config.command_timeout,
            connect_timeout=self.db_config.connect_timeout,
            acquire_timeout=self.db_config.acquire_timeout,
            ssl=self.db_config.ssl,
            ssl_verify=self.db_config.ssl_verify,
        )

    async def _create_team_pool(self, code: str) -> AsyncDatabasePool:
        team = await self.get_team_config(code)
        if team is None:
            raise TeamNotFoundError(f"Team {code} not found or inactive", team_code=code)

        logger.info("Creating pool for team %s (db=%s, host=%s)", code, team.db_name, team.db_host)
        try:
            return await self._pool_factory(self.pool_config(team))
        except Exception as exc:
            error = classify_error(exc, database=team.db_name, team_code=code)
            if error is None:
                raise
            self._last_errors[code] = error.message
            raise error from exc

    async def get_team_pool_by_code(self, team_code: str) -> AsyncDatabasePool:
        """Return the team's pool, creating it on first use."""
        code = normalize_team_code(team_code)
        if code is None:
            raise TeamNotFoundError(f"Invalid team code {team_code!r}", team_code=str(team_code))

        pool = self.registry.get(code)
        if pool is not None:
            return pool
        return await self.registry.get_or_create(code, lambda: self._create_team_pool(code))

    async def team_transaction(
        self,
        team_code: str,
        work: TransactionWork,
        max_retries: Optional[int] = None,
    ) -> Any:
        """Run work(conn) in a transaction on the team's database."""
        pool = await self.get_team_pool_by_code(team_code)
        code = normalize_team_code(team_code)
        try:
            return await run_transaction(
                pool,
                work,
                attempts=max_retries if max_retries is not None else self.db_config.team_max_retries,
                base_delay=self.db_config.team_retry_delay,
                label=f"team_transaction[{code}]",
                database=f"team_{code}",
                team_code=code,
            )
        except DbError as error:
            self.handle_error(code, error, pool)
            raise

    def handle_error(self, team_code: str, error: DbError, pool: Optional[Any] = None) -> None:
        """Record an error against a team pool; evict on connection failure."""
        code = normalize_team_code(team_code) or team_code
        self._last_errors[code] = error.message
        if pool is not None and hasattr(pool, "record_error"):
            pool.record_error(error)
        if error.is_connection_failure:
            self.evict(code)

    def evict(self, team_code: str) -> bool:
        code = normalize_team_code(team_code)
        if code is None:
            return False
        evicted = self.registry.evict(code) is not None
        if evicted:
            logger.warning("Team pool for %s evicted; next access will reconnect", code)
        return evicted

    async def test_team_connection(self, team_code: str) -> bool:
        try:
            pool = await self.get_team_pool_by_code(team_code)
        except DbError as error:
            logger.error("Team %s connection test failed: %s", team_code, error.message)
            return False
        healthy = await pool.test_connection()
        if not healthy:
            self.evict(team_code)
        return healthy

    async def close_team_pool(self, team_code: str) -> bool:
        """Close the team's pool now, waiting for its connections to finish."""
        code = normalize_team_code(team_code)
        if code is None:
            return False
        return await self.registry.close(code)

    async def close_all(self) -> None:
        await self.registry.close_all()

    def connection_status(self) -> Dict[str, Any]:
        teams = {code: pool.stats() for code, pool in self.registry.items()}
        return {
            "active_pools": len(teams),
            "pools_created": self.registry.created_count,
            "teams": teams,
            "last_errors": dict(self._last_errors),
        }
