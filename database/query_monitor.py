"""
Query Monitor - timing and slow-operation warnings for database work.

Entries are ephemeral: start_query() opens one, end_query() closes it, and
only a bounded history of recent and slow entries is kept for the health
endpoint.
"""
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

_MAX_PARAMS = 10
_MAX_PARAM_LENGTH = 100


def _summarize_params(params: Any) -> List[str]:
    if params is None:
        return []
    if isinstance(params, dict):
        items: Sequence[Any] = [f"{k}={v}" for k, v in params.items()]
    elif isinstance(params, (list, tuple)):
        items = params
    else:
        items = [params]
    return [str(p)[:_MAX_PARAM_LENGTH] for p in list(items)[:_MAX_PARAMS]]


@dataclass
class QueryRecord:
    """A single monitored operation"""
    token: str
    label: str
    kind: str
    params: List[str]
    db_key: Optional[str]
    path: Optional[str]
    started_at: float
    started_wall: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    affected_rows: Optional[int] = None
    slow: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "kind": self.kind,
            "db_key": self.db_key,
            "path": self.path,
            "params": self.params,
            "started_at": self.started_wall.isoformat(),
            "duration_ms": round(self.duration_ms, 2) if self.duration_ms is not None else None,
            "error": self.error,
            "affected_rows": self.affected_rows,
            "slow": self.slow,
        }


class QueryMonitor:
    """Times queries, API calls and transactions against per-kind thresholds."""

    def __init__(
        self,
        slow_query_ms: float = 500.0,
        slow_api_ms: float = 1000.0,
        slow_transaction_ms: float = 1500.0,
        history_size: int = 100,
    ) -> None:
        self.thresholds = {
            "query": slow_query_ms,
            "api": slow_api_ms,
            "transaction": slow_transaction_ms,
        }
        self._active: Dict[str, QueryRecord] = {}
        self._recent: Deque[QueryRecord] = deque(maxlen=history_size)
        self._slow: Deque[QueryRecord] = deque(maxlen=history_size)
        self.total_queries = 0
        self.total_errors = 0
        self.total_duration_ms = 0.0
        self.max_duration_ms = 0.0
        self.slow_count = 0

    def threshold_for(self, kind: str) -> float:
        return self.thresholds.get(kind, self.thresholds["query"])

    def start_query(
        self,
        label: str,
        params: Any = None,
        db_key: Optional[str] = None,
        path: Optional[str] = None,
        kind: str = "query",
    ) -> str:
        token = uuid.uuid4().hex
        self._active[token] = QueryRecord(
            token=token,
            label=label,
            kind=kind,
            params=_summarize_params(params),
            db_key=db_key,
            path=path,
            started_at=time.perf_counter(),
        )
        return token

    def end_query(
        self,
        token: str,
        error: Optional[Any] = None,
        affected_rows: Optional[int] = None,
    ) -> Optional[QueryRecord]:
        record = self._active.pop(token, None)
        if record is None:
            logger.debug("end_query called for unknown token %s", token)
            return None

        record.duration_ms = (time.perf_counter() - record.started_at) * 1000
        record.error = str(error) if error is not None else None
        record.affected_rows = affected_rows

        self.total_queries += 1
        self.total_duration_ms += record.duration_ms
        self.max_duration_ms = max(self.max_duration_ms, record.duration_ms)
        if record.error is not None:
            self.total_errors += 1

        threshold = self.threshold_for(record.kind)
        if record.duration_ms > threshold:
            record.slow = True
            self.slow_count += 1
            self._slow.append(record)
            logger.warning(
                "Slow %s: %s took %.0fms (threshold %.0fms, db=%s, path=%s)",
                record.kind, record.label, record.duration_ms, threshold, record.db_key, record.path,
            )

        self._recent.append(record)
        return record

    def is_active(self, token: str) -> bool:
        return token in self._active

    @property
    def active_count(self) -> int:
        return len(self._active)

    def get_stats(self) -> Dict[str, Any]:
        average = self.total_duration_ms / self.total_queries if self.total_queries else 0.0
        return {
            "total_queries": self.total_queries,
            "total_errors": self.total_errors,
            "average_duration_ms": round(average, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "slow_queries": self.slow_count,
            "active_queries": self.active_count,
        }

    def get_slow_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in list(self._slow)[-limit:][::-1]]

    def get_recent_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in list(self._recent)[-limit:][::-1]]

    def reset(self) -> None:
        self._recent.clear()
        self._slow.clear()
        self.total_queries = 0
        self.total_errors = 0
        self.total_duration_ms = 0.0
        self.max_duration_ms = 0.0
        self.slow_count = 0
