"""
Database error taxonomy.

Driver exceptions (asyncpg, asyncio timeouts, socket errors) are translated
exactly once, by classify_error(), into the closed DbError hierarchy below.
Everything downstream (retry loops, pool eviction, HTTP mapping) matches on
DbError.kind instead of inspecting SQLSTATE codes or messages.
"""
import asyncio
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)


class DbErrorType(str, Enum):
    """Closed set of database failure kinds"""
    CONNECTION = "connection"
    PERMISSION = "permission"
    DUPLICATE = "duplicate"
    FOREIGN_KEY = "foreign_key"
    CONSTRAINT = "constraint"
    TIMEOUT = "timeout"
    DEADLOCK = "deadlock"
    TEAM_NOT_FOUND = "team_not_found"
    PROVISIONING_REQUIRED = "provisioning_required"
    PROVISIONING = "provisioning"


class DbError(Exception):
    """Base class for every classified database failure."""

    kind: DbErrorType = DbErrorType.CONNECTION
    status_code: int = 500
    code: str = "DB_ERROR"
    default_user_message: str = "A database error occurred"
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        code: Optional[str] = None,
        sqlstate: Optional[str] = None,
        retryable: Optional[bool] = None,
        database: Optional[str] = None,
        team_code: Optional[str] = None,
        cause_kind: Optional[DbErrorType] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        if code:
            self.code = code
        self.sqlstate = sqlstate
        self.retryable = self.default_retryable if retryable is None else retryable
        self.database = database
        self.team_code = team_code
        # kind of the underlying failure when this error wraps exhausted retries
        self.cause_kind = cause_kind or self.kind

    @property
    def is_transient(self) -> bool:
        """Deadlocks and lock-wait timeouts; safe to re-run a whole transaction."""
        return self.retryable and self.kind in (DbErrorType.DEADLOCK, DbErrorType.TIMEOUT)

    @property
    def is_connection_failure(self) -> bool:
        """The database itself was unreachable or refused us; pools holding it are stale."""
        return self.kind == DbErrorType.CONNECTION and self.cause_kind == DbErrorType.CONNECTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "sqlstate": self.sqlstate,
            "retryable": self.retryable,
            "cause_kind": self.cause_kind.value,
            "database": self.database,
            "team_code": self.team_code,
        }


class DbConnectionError(DbError):
    kind = DbErrorType.CONNECTION
    status_code = 503
    code = "DB_CONNECTION_ERROR"
    default_user_message = "Database is temporarily unavailable"


class DbPermissionError(DbError):
    kind = DbErrorType.PERMISSION
    status_code = 403
    code = "DB_PERMISSION_DENIED"
    default_user_message = "Database operation not permitted"


class DuplicateError(DbError):
    kind = DbErrorType.DUPLICATE
    status_code = 409
    code = "DUPLICATE_ENTRY"
    default_user_message = "A record with the same unique value already exists"


class ForeignKeyError(DbError):
    kind = DbErrorType.FOREIGN_KEY
    status_code = 422
    code = "FOREIGN_KEY_VIOLATION"
    default_user_message = "The record references data that does not exist or is still referenced"


class ConstraintError(DbError):
    kind = DbErrorType.CONSTRAINT
    status_code = 400
    code = "CONSTRAINT_VIOLATION"
    default_user_message = "The data violates a database constraint"


class DbTimeoutError(DbError):
    kind = DbErrorType.TIMEOUT
    status_code = 408
    code = "DB_TIMEOUT"
    default_user_message = "The database operation timed out"


class DeadlockError(DbError):
    kind = DbErrorType.DEADLOCK
    status_code = 503
    code = "DB_DEADLOCK"
    default_user_message = "The database is busy, please retry"
    default_retryable = True


class TeamNotFoundError(DbError):
    kind = DbErrorType.TEAM_NOT_FOUND
    status_code = 404
    code = "TEAM_NOT_FOUND"
    default_user_message = "Team not found"


class ProvisioningRequiredError(DbError):
    kind = DbErrorType.PROVISIONING_REQUIRED
    status_code = 409
    code = "TEAM_DATABASE_NOT_INITIALIZED"
    default_user_message = (
        "The team database has not been initialized. "
        "Ask the team owner to run database initialization."
    )


class ProvisioningError(DbError):
    kind = DbErrorType.PROVISIONING
    status_code = 500
    code = "PROVISIONING_FAILED"
    default_user_message = "Team database initialization failed"

    def __init__(self, message: str, *, step: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.step = step


# Connection failures where the socket died under an established session.
_DROPPED_CONNECTION_ERRORS = (
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.ConnectionFailureError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.InternalClientError,
)

_FATAL_CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InvalidPasswordError,
    asyncpg.exceptions.InvalidAuthorizationSpecificationError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)

_CONSTRAINT_ERRORS = (
    asyncpg.exceptions.IntegrityConstraintViolationError,
    asyncpg.exceptions.DataError,
)


def classify_error(
    exc: BaseException,
    *,
    database: Optional[str] = None,
    team_code: Optional[str] = None,
) -> Optional[DbError]:
    """Translate a driver exception into a DbError.

    Returns the exception itself when it is already a DbError, and None when
    it is not a database failure at all (business errors, HTTPException,
    programming errors), so callers can re-raise those untouched.
    """
    if isinstance(exc, DbError):
        return exc

    ctx = {"database": database, "team_code": team_code}
    sqlstate = getattr(exc, "sqlstate", None)
    detail = str(exc) or exc.__class__.__name__

    # asyncio.TimeoutError is builtin TimeoutError (an OSError) on 3.11+
    if isinstance(exc, asyncio.TimeoutError):
        return DbTimeoutError(f"Database operation timed out: {detail}", **ctx)

    if isinstance(exc, (asyncpg.exceptions.DeadlockDetectedError, asyncpg.exceptions.SerializationError)):
        return DeadlockError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, asyncpg.exceptions.LockNotAvailableError):
        return DbTimeoutError(
            detail,
            code="LOCK_TIMEOUT",
            sqlstate=sqlstate,
            retryable=True,
            **ctx,
        )

    if isinstance(exc, asyncpg.exceptions.QueryCanceledError):
        return DbTimeoutError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, asyncpg.exceptions.UniqueViolationError):
        return DuplicateError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, asyncpg.exceptions.ForeignKeyViolationError):
        return ForeignKeyError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, _CONSTRAINT_ERRORS):
        return ConstraintError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, asyncpg.exceptions.InsufficientPrivilegeError):
        return DbPermissionError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, asyncpg.exceptions.InvalidCatalogNameError):
        return ProvisioningRequiredError(detail, sqlstate=sqlstate, **ctx)

    if team_code and isinstance(exc, asyncpg.exceptions.UndefinedTableError):
        return ProvisioningRequiredError(detail, sqlstate=sqlstate, **ctx)

    if (
        isinstance(exc, asyncpg.exceptions.InvalidAuthorizationSpecificationError)
        and "does not exist" in detail
    ):
        # role "x" does not exist
        return ProvisioningRequiredError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, _DROPPED_CONNECTION_ERRORS):
        return DbConnectionError(detail, sqlstate=sqlstate, retryable=True, **ctx)

    if isinstance(exc, _FATAL_CONNECTION_ERRORS):
        return DbConnectionError(detail, sqlstate=sqlstate, **ctx)

    if isinstance(exc, OSError):
        return DbConnectionError(f"Cannot reach database: {detail}", **ctx)

    return None


class ErrorLog:
    """Bounded in-process record of classified database errors."""

    def __init__(self, max_entries: int = 100) -> None:
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._counts: Counter = Counter()

    def record(self, error: DbError, path: Optional[str] = None) -> None:
        entry = error.to_dict()
        entry["path"] = path
        entry["timestamp"] = datetime.now(timezone.utc).isoformat()
        self._entries.append(entry)
        self._counts[error.kind.value] += 1

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        return list(self._entries)[-limit:][::-1]

    def stats(self) -> Dict[str, Any]:
        return {"total": sum(self._counts.values()), "by_kind": dict(self._counts)}
