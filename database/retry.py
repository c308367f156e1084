import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from database.errors import DbError, classify_error

logger = logging.getLogger(__name__)


def _retryable(error: DbError) -> bool:
    return error.retryable


async def run_with_retry(
    operation: Callable[[], Awaitable[Any]],
    *,
    attempts: int,
    base_delay: float,
    label: str,
    database: Optional[str] = None,
    team_code: Optional[str] = None,
    should_retry: Callable[[DbError], bool] = _retryable,
    on_exhausted: Optional[Callable[[DbError, int], DbError]] = None,
) -> Any:
    """
    Run operation up to `attempts` times.

    Failures are classified once; only errors accepted by should_retry are
    re-run, with exponential backoff (base_delay * 2 ** (attempt - 1)).
    Non-database exceptions propagate unchanged on the first attempt.
    """
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc, database=database, team_code=team_code)
            if error is None:
                raise

            if not should_retry(error):
                if error is exc:
                    raise
                raise error from exc

            if attempt >= attempts:
                logger.error(
                    "%s failed after %d attempts (db=%s): %s",
                    label, attempts, database or team_code, error.message,
                )
                final = on_exhausted(error, attempts) if on_exhausted else error
                if final is exc:
                    raise
                raise final from exc

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "%s hit %s (attempt %d/%d, db=%s), retrying in %.2fs",
                label, error.kind.value, attempt, attempts, database or team_code, delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"Unexpected state: {label} exited retry loop")
