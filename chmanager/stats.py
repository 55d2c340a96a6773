"""
Correlate a client-side query execution with its row in system.query_log.

The query log is written asynchronously, so after the target query finishes
the logs are flushed and the log is probed exactly once by query id. A probe
that finds nothing (or fails) is not an error: the caller gets wall-clock
time only and every other counter stays zero.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from .cursor import ResultCursor
from .errors import ChManagerError, QueryTimeoutError
from .models import QueryStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

# issued by clients while opening a connection; must never be taken for the user's query
SELF_CHECK_QUERY = "SELECT displayName(), version(), revision(), timezone()"

FLUSH_LOGS_SQL = "SYSTEM FLUSH LOGS"

QUERY_LOG_PROBE_SQL = (
    "SELECT query_duration_ms, read_rows, read_bytes, memory_usage, "
    "ProfileEvents['SelectedParts'], ProfileEvents['SelectedMarks'] "
    "FROM system.query_log "
    "WHERE type = 'QueryFinish' "
    "AND query_id = %(query_id)s "
    "AND query != '" + SELF_CHECK_QUERY + "' "
    "LIMIT 1"
)


class ProbeState(Enum):
    EXECUTING = "executing"
    EXECUTED = "executed"
    FLUSHED = "flushed"
    PROBED = "probed"
    MATCHED = "matched"
    MISSED = "missed"


def new_query_id() -> str:
    return str(uuid.uuid4())


class StatsCorrelator:
    """
    Runs one query on an open session and collects its QueryStats.

    `run` executes the query under a fresh query id and hands the cursor to
    `consume`; `collect` then flushes the logs and probes for the matching
    log row. Execution errors propagate from `run` and nothing is collected.
    """

    def __init__(
        self,
        session: Any,
        query_id: Optional[str] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.session = session
        self.query_id = query_id or new_query_id()
        self.state: Optional[ProbeState] = None
        self.fallback_ms = 0
        self._clock = clock

    def run(self, sql: str, consume: Callable[[ResultCursor], T]) -> T:
        logger.debug("executing query_id=%s", self.query_id)
        self.state = ProbeState.EXECUTING
        start = self._clock()
        cursor = self.session.query(sql, query_id=self.query_id)
        try:
            payload = consume(cursor)
        finally:
            cursor.close()
        # a completed query never reports 0 ms
        self.fallback_ms = max(1, int(round((self._clock() - start) * 1000.0)))
        self.state = ProbeState.EXECUTED
        return payload

    def collect(self) -> QueryStats:
        if self.state is not ProbeState.EXECUTED:
            raise RuntimeError("collect() called before the query was executed")
        self._flush_logs()
        row = self._probe()
        if row is None:
            self.state = ProbeState.MISSED
            logger.warning(
                "query_log has no entry for query_id=%s; using client time %d ms",
                self.query_id,
                self.fallback_ms,
            )
            return QueryStats(execution_time_ms=self.fallback_ms)
        self.state = ProbeState.MATCHED
        return stats_from_log_row(row)

    def _flush_logs(self) -> None:
        try:
            self.session.execute(FLUSH_LOGS_SQL)
        except QueryTimeoutError:
            raise
        except ChManagerError as exc:
            # only lowers the odds the probe sees the entry
            logger.warning("SYSTEM FLUSH LOGS failed: %s", exc)
        self.state = ProbeState.FLUSHED

    def _probe(self) -> Optional[Tuple[Any, ...]]:
        params: Dict[str, Any] = {"query_id": self.query_id}
        logger.debug("probing query_log for query_id=%s: %s", self.query_id, QUERY_LOG_PROBE_SQL)
        try:
            row = self.session.query_row(QUERY_LOG_PROBE_SQL, params)
        except QueryTimeoutError:
            raise
        except ChManagerError as exc:
            logger.warning("query_log probe failed for query_id=%s: %s", self.query_id, exc)
            row = None
        self.state = ProbeState.PROBED
        return row


def stats_from_log_row(row: Tuple[Any, ...]) -> QueryStats:
    duration, read_rows, read_bytes, memory_usage, parts, marks = row
    return QueryStats(
        execution_time_ms=_to_int(duration),
        rows_read=_to_int(read_rows),
        bytes_read=_to_int(read_bytes),
        memory_peak=_to_int(memory_usage),
        parts_read=_to_int(parts),
        marks_read=_to_int(marks),
        from_log=True,
    )


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    return max(0, int(value))
