import uuid

import pytest

from chmanager.decoder import decode_rows
from chmanager.errors import ExecutionError, QueryTimeoutError
from chmanager.stats import (
    FLUSH_LOGS_SQL,
    QUERY_LOG_PROBE_SQL,
    SELF_CHECK_QUERY,
    ProbeState,
    StatsCorrelator,
    new_query_id,
)

from fakes import FakeSession

SQL = "SELECT 1 AS a"


def _clock(*ticks):
    values = iter(ticks)
    return lambda: next(values)


def _session(**kwargs):
    return FakeSession(results={SQL: (["a"], ["UInt8"], [(1,)])}, **kwargs)


def test_matched_probe_takes_every_field_from_the_log():
    session = _session(probe_row=(42, 1000, 8000, 4096, 3, 7))
    correlator = StatsCorrelator(session, clock=_clock(10.0, 10.5))

    columns, rows = correlator.run(SQL, decode_rows)
    stats = correlator.collect()

    assert (columns, rows) == (["a"], [{"a": 1}])
    assert correlator.state is ProbeState.MATCHED
    assert stats.execution_time_ms == 42
    assert (stats.rows_read, stats.bytes_read, stats.memory_peak) == (1000, 8000, 4096)
    assert (stats.parts_read, stats.marks_read) == (3, 7)
    assert stats.from_log is True


def test_missed_probe_keeps_only_wall_clock_time():
    session = _session(probe_row=None)
    correlator = StatsCorrelator(session, clock=_clock(10.0, 10.25))

    correlator.run(SQL, decode_rows)
    stats = correlator.collect()

    assert correlator.state is ProbeState.MISSED
    assert stats.execution_time_ms == 250
    assert (stats.rows_read, stats.bytes_read, stats.memory_peak) == (0, 0, 0)
    assert (stats.parts_read, stats.marks_read) == (0, 0)
    assert stats.from_log is False


def test_failed_probe_degrades_instead_of_raising():
    session = _session(probe_error=ExecutionError("system.query_log does not exist"))
    correlator = StatsCorrelator(session, clock=_clock(1.0, 1.1))

    correlator.run(SQL, decode_rows)
    stats = correlator.collect()

    assert correlator.state is ProbeState.MISSED
    assert stats.execution_time_ms == 100
    assert stats.rows_read == 0


def test_flush_failure_is_not_fatal():
    session = _session(flush_error=ExecutionError("not enough privileges"), probe_row=(5, 1, 1, 1, 1, 1))
    correlator = StatsCorrelator(session)

    correlator.run(SQL, decode_rows)
    stats = correlator.collect()

    assert stats.from_log is True
    assert session.called("execute") == [("execute", FLUSH_LOGS_SQL)]
    assert len(session.called("query_row")) == 1


def test_flush_then_single_probe_by_query_id():
    session = _session(probe_row=None)
    correlator = StatsCorrelator(session, query_id="qid-1")

    correlator.run(SQL, decode_rows)
    correlator.collect()

    kinds = [call[0] for call in session.calls]
    assert kinds == ["query", "execute", "query_row"]
    assert session.calls[0] == ("query", SQL, None, "qid-1")
    assert session.calls[2] == ("query_row", QUERY_LOG_PROBE_SQL, {"query_id": "qid-1"})


def test_execution_error_stops_before_flush_and_probe():
    session = _session(query_error=ExecutionError("Syntax error"))
    correlator = StatsCorrelator(session)

    with pytest.raises(ExecutionError):
        correlator.run(SQL, decode_rows)

    assert correlator.state is ProbeState.EXECUTING
    assert session.called("execute") == []
    assert session.called("query_row") == []
    with pytest.raises(RuntimeError):
        correlator.collect()


def test_probe_timeout_propagates():
    session = _session(probe_error=QueryTimeoutError("deadline exceeded before executing the query"))
    correlator = StatsCorrelator(session)
    correlator.run(SQL, decode_rows)

    with pytest.raises(QueryTimeoutError):
        correlator.collect()


def test_probe_sql_excludes_the_self_check_query():
    assert "type = 'QueryFinish'" in QUERY_LOG_PROBE_SQL
    assert "query_id = %(query_id)s" in QUERY_LOG_PROBE_SQL
    assert "query != '%s'" % SELF_CHECK_QUERY in QUERY_LOG_PROBE_SQL
    assert QUERY_LOG_PROBE_SQL.endswith("LIMIT 1")
    assert SELF_CHECK_QUERY == "SELECT displayName(), version(), revision(), timezone()"


def test_negative_and_null_log_values_clamp_to_zero():
    session = _session(probe_row=(7, None, 10, -2048, 0, None))
    correlator = StatsCorrelator(session)
    correlator.run(SQL, decode_rows)

    stats = correlator.collect()

    assert stats.execution_time_ms == 7
    assert stats.rows_read == 0
    assert stats.memory_peak == 0


def test_query_ids_are_fresh_uuids():
    first, second = new_query_id(), new_query_id()
    assert first != second
    assert str(uuid.UUID(first)) == first
    assert StatsCorrelator(_session()).query_id != StatsCorrelator(_session()).query_id


def test_sub_millisecond_miss_reports_at_least_one_ms():
    session = _session(probe_row=None)
    correlator = StatsCorrelator(session, clock=_clock(5.0, 5.0002))

    correlator.run(SQL, decode_rows)
    stats = correlator.collect()

    assert stats.execution_time_ms == 1
    assert stats.from_log is False
