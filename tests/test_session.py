import dataclasses

import pytest
from clickhouse_connect.driver.exceptions import ClickHouseError
from clickhouse_driver import errors as driver_errors

from chmanager import deadline as deadline_module
from chmanager import http_client, native_client
from chmanager.client import ClickHouseClient
from chmanager.config import PROTOCOL_HTTP
from chmanager.deadline import Deadline
from chmanager.decoder import decode_rows
from chmanager.errors import ChManagerError, ConnectivityError, ExecutionError, QueryTimeoutError
from chmanager.http_client import HttpSession
from chmanager.native_client import NativeSession
from chmanager.session import create_session, open_session
from chmanager.stats import FLUSH_LOGS_SQL, QUERY_LOG_PROBE_SQL

from fakes import failing_rows


class _FakeConnection:
    def __init__(self, connect_error=None, alive=True):
        self.connect_error = connect_error
        self.alive = alive

    def force_connect(self):
        if self.connect_error:
            raise self.connect_error

    def ping(self):
        return self.alive


class _FakeDriverClient:
    connect_error = None
    stream = None
    execute_error = None
    failures = {}

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.connection = _FakeConnection(self.connect_error)
        self.disconnected = False
        self.executed = []

    def execute_iter(self, sql, params=None, **kwargs):
        self.executed.append((sql, params, kwargs))
        return iter(self.stream)

    def execute(self, sql, params=None, **kwargs):
        self.executed.append((sql, params, kwargs))
        error = self.failures.get(sql, self.execute_error)
        if error:
            raise error
        return [(1,)]

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def driver(monkeypatch):
    class Driver(_FakeDriverClient):
        instances = []
        connect_error = None
        stream = [[("a", "UInt8")], (1,)]
        execute_error = None
        failures = {}

        def __init__(self, **kwargs):
            super().__init__(**kwargs)
            Driver.instances.append(self)

    monkeypatch.setattr(native_client, "Client", Driver)
    return Driver


def test_native_query_reads_header_then_rows(profile, driver):
    with open_session(profile) as session:
        columns, rows = decode_rows(session.query("SELECT 1 AS a", query_id="qid"))

    assert (columns, rows) == (["a"], [{"a": 1}])
    client = driver.instances[0]
    assert client.disconnected
    sql, _, kwargs = client.executed[0]
    assert sql == "SELECT 1 AS a"
    assert kwargs["with_column_types"] is True
    assert kwargs["query_id"] == "qid"


def test_native_client_kwargs(profile, driver):
    tls = dataclasses.replace(profile, use_tls=True, port=9440, database="analytics")
    NativeSession(tls).connect()

    kwargs = driver.instances[0].kwargs
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9440
    assert kwargs["user"] == "default"
    assert kwargs["database"] == "analytics"
    assert kwargs["secure"] is True
    assert kwargs["verify"] is False


def test_native_plain_connection_has_no_tls(profile, driver):
    NativeSession(profile).connect()

    kwargs = driver.instances[0].kwargs
    assert "secure" not in kwargs
    assert "database" not in kwargs


def test_native_connect_failure_is_connectivity_error(profile, driver):
    driver.connect_error = driver_errors.NetworkError("Connection refused")

    with pytest.raises(ConnectivityError, match="127.0.0.1:9000"):
        with open_session(profile):
            pass

    assert driver.instances[0].disconnected


def test_native_expired_deadline_is_timeout(profile, driver):
    with pytest.raises(QueryTimeoutError):
        NativeSession(profile, Deadline(expires_at=0.0)).connect()
    assert driver.instances == []


def test_native_server_error_is_execution_error(profile, driver):
    driver.execute_error = driver_errors.ServerException("Unknown table", code=60)

    with open_session(profile) as session:
        with pytest.raises(ExecutionError, match=r"\[60\]"):
            session.execute("DROP TABLE nope")


def test_native_timeout_code_is_timeout(profile, driver):
    driver.execute_error = driver_errors.ServerException("Timeout exceeded", code=159)

    with open_session(profile) as session:
        with pytest.raises(QueryTimeoutError):
            session.query_row("SELECT sleep(3)")


def test_native_deadline_sets_max_execution_time(profile, driver):
    with open_session(profile, Deadline.after(30)) as session:
        session.execute("SYSTEM FLUSH LOGS")

    _, _, kwargs = driver.instances[0].executed[0]
    assert 29 <= kwargs["settings"]["max_execution_time"] <= 30


def test_native_dropped_connection_degrades_stats(profile, driver):
    driver.failures = {QUERY_LOG_PROBE_SQL: EOFError("Unexpected EOF while reading bytes")}

    stats = ClickHouseClient().execute_query_with_stats(profile, "SELECT 1 AS a")

    assert stats.from_log is False
    assert stats.execution_time_ms >= 1
    assert stats.rows_read == 0
    assert driver.instances[0].disconnected


def test_native_dropped_connection_on_flush_and_lookup(profile, driver):
    driver.execute_error = EOFError("Unexpected EOF while reading bytes")

    stats = ClickHouseClient().execute_query_with_stats(profile, "SELECT 1 AS a")

    assert stats.from_log is False
    executed = [sql for sql, _, _ in driver.instances[0].executed]
    assert executed == ["SELECT 1 AS a", FLUSH_LOGS_SQL, QUERY_LOG_PROBE_SQL]


def test_native_dropped_connection_mid_stream_is_typed(profile, driver):
    driver.stream = failing_rows(
        [[("a", "UInt8")], (1,)], EOFError("Unexpected EOF while reading bytes")
    )

    with open_session(profile) as session:
        with pytest.raises(ConnectivityError, match="closed"):
            decode_rows(session.query("SELECT 1 AS a"))


def test_native_dropped_connection_on_statement(profile, driver):
    driver.execute_error = EOFError("Unexpected EOF while reading bytes")

    with open_session(profile) as session:
        with pytest.raises(ChManagerError):
            session.execute("SYSTEM FLUSH LOGS")


class _FakeColumnType:
    def __init__(self, name):
        self.name = name


class _FakeQueryResult:
    def __init__(self, names, types, rows):
        self.column_names = tuple(names)
        self.column_types = [_FakeColumnType(t) for t in types]
        self.result_rows = rows


class _FakeHttpClient:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.queries = []
        self.closed = False

    def query(self, sql, parameters=None, settings=None):
        self.queries.append((sql, parameters, settings))
        return _FakeQueryResult(["a"], ["UInt8"], [(1,)])

    def command(self, sql, settings=None):
        self.queries.append((sql, None, settings))

    def ping(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def http_profile(profile):
    return dataclasses.replace(profile, protocol=PROTOCOL_HTTP, port=8123)


@pytest.fixture
def http_driver(monkeypatch):
    created = []

    def get_client(**kwargs):
        client = _FakeHttpClient(**kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(http_client.clickhouse_connect, "get_client", get_client)
    return created


def test_protocol_selects_session_type(profile, http_profile):
    assert isinstance(create_session(profile), NativeSession)
    assert isinstance(create_session(http_profile), HttpSession)


def test_http_query_passes_query_id_in_settings(http_profile, http_driver):
    with open_session(http_profile) as session:
        columns, rows = decode_rows(session.query("SELECT 1 AS a", query_id="qid"))
        session.ping()

    assert (columns, rows) == (["a"], [{"a": 1}])
    client = http_driver[0]
    assert client.closed
    assert client.kwargs["username"] == "default"
    _, _, settings = client.queries[0]
    assert settings["query_id"] == "qid"


def test_http_query_row_empty_result(http_profile, http_driver, monkeypatch):
    monkeypatch.setattr(
        _FakeHttpClient, "query", lambda self, sql, parameters=None, settings=None: _FakeQueryResult([], [], [])
    )
    with open_session(http_profile) as session:
        assert session.query_row("SELECT 1 WHERE 0") is None


def test_http_client_kwargs(http_profile, http_driver):
    tls = dataclasses.replace(http_profile, use_tls=True, port=8443, database="analytics")
    HttpSession(tls).connect()

    kwargs = http_driver[0].kwargs
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8443
    assert kwargs["database"] == "analytics"
    assert kwargs["secure"] is True
    assert kwargs["verify"] is False


def test_http_connect_failure_is_connectivity_error(http_profile, monkeypatch):
    def get_client(**kwargs):
        raise ClickHouseError("Connection refused")

    monkeypatch.setattr(http_client.clickhouse_connect, "get_client", get_client)

    with pytest.raises(ConnectivityError, match="127.0.0.1:8123"):
        with open_session(http_profile):
            pass


def test_http_connect_past_deadline_is_timeout(http_profile, monkeypatch):
    now = {"t": 99.0}
    monkeypatch.setattr(deadline_module.time, "monotonic", lambda: now["t"])

    def get_client(**kwargs):
        now["t"] = 101.0
        raise ClickHouseError("timed out")

    monkeypatch.setattr(http_client.clickhouse_connect, "get_client", get_client)

    with pytest.raises(QueryTimeoutError):
        HttpSession(http_profile, Deadline(expires_at=100.0)).connect()


def test_http_timeout_exceeded_is_timeout(http_profile, http_driver, monkeypatch):
    def query(self, sql, parameters=None, settings=None):
        raise ClickHouseError("Code: 159. DB::Exception: Timeout exceeded. (TIMEOUT_EXCEEDED)")

    monkeypatch.setattr(_FakeHttpClient, "query", query)

    with open_session(http_profile) as session:
        with pytest.raises(QueryTimeoutError):
            session.query_row("SELECT sleep(3)")


def test_http_server_error_is_execution_error(http_profile, http_driver, monkeypatch):
    def command(self, sql, settings=None):
        raise ClickHouseError("Code: 60. DB::Exception: Unknown table. (UNKNOWN_TABLE)")

    monkeypatch.setattr(_FakeHttpClient, "command", command)

    with open_session(http_profile) as session:
        with pytest.raises(ExecutionError, match="UNKNOWN_TABLE"):
            session.execute("DROP TABLE nope")
