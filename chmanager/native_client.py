import logging
from typing import Any, Dict, Optional, Tuple

from clickhouse_driver import Client
from clickhouse_driver import errors as driver_errors

from .config import ConnectionProfile
from .cursor import ResultCursor
from .deadline import Deadline
from .errors import (
    ConnectivityError,
    ExecutionError,
    QueryTimeoutError,
    describe_exception,
)

logger = logging.getLogger(__name__)

CLIENT_NAME = "chmanager"
CONNECT_TIMEOUT_SECONDS = 10.0
SEND_RECEIVE_TIMEOUT_SECONDS = 300.0
TIMEOUT_EXCEEDED_CODE = 159

# the driver raises a bare EOFError when the server drops the connection
DRIVER_ERRORS = (driver_errors.Error, OSError, EOFError)


class NativeSession:
    """
    One native-protocol (TCP) session to ClickHouse via clickhouse-driver.
    """

    def __init__(self, profile: ConnectionProfile, deadline: Optional[Deadline] = None) -> None:
        self.profile = profile
        self.deadline = deadline or Deadline()
        self._client: Optional[Client] = None

    def connect(self) -> Client:
        if self._client is not None:
            return self._client
        self.deadline.check("opening a session")
        client = Client(**self._client_kwargs())
        try:
            # the driver connects lazily; surface connectivity problems here
            client.connection.force_connect()
        except DRIVER_ERRORS as exc:
            client.disconnect()
            if self.deadline.expired():
                raise QueryTimeoutError(
                    "timed out connecting to %s" % self.profile.address
                ) from exc
            raise ConnectivityError(
                "cannot connect to %s: %s" % (self.profile.address, describe_exception(exc))
            ) from exc
        logger.debug("native session open to %s", self.profile.address)
        self._client = client
        return client

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.disconnect()
        finally:
            self._client = None
            logger.debug("native session to %s closed", self.profile.address)

    def ping(self) -> None:
        client = self.connect()
        try:
            alive = client.connection.ping()
        except DRIVER_ERRORS as exc:
            raise ConnectivityError(
                "ping to %s failed: %s" % (self.profile.address, describe_exception(exc))
            ) from exc
        if alive is False:
            raise ConnectivityError("ping to %s failed" % self.profile.address)

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        query_id: Optional[str] = None,
    ) -> ResultCursor:
        client = self.connect()
        self.deadline.check("executing the query")
        try:
            stream = client.execute_iter(
                sql,
                params,
                with_column_types=True,
                query_id=query_id,
                settings=self._settings(),
            )
            # first item of the stream is the header: [(name, type), ...]
            header = next(stream, None)
        except DRIVER_ERRORS as exc:
            raise self._translate(exc) from exc

        columns_with_types = header or []
        return ResultCursor(
            columns=[name for name, _ in columns_with_types],
            column_types=[type_name for _, type_name in columns_with_types],
            rows=stream,
            stream_errors=DRIVER_ERRORS,
            translate_error=self._translate,
            deadline=self.deadline,
        )

    def query_row(
        self, sql: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        client = self.connect()
        self.deadline.check("executing the query")
        try:
            rows = client.execute(sql, params, settings=self._settings())
        except DRIVER_ERRORS as exc:
            raise self._translate(exc) from exc
        if not rows:
            return None
        return tuple(rows[0])

    def execute(self, sql: str) -> None:
        client = self.connect()
        self.deadline.check("executing the statement")
        try:
            client.execute(sql, settings=self._settings())
        except DRIVER_ERRORS as exc:
            raise self._translate(exc) from exc

    def _client_kwargs(self) -> Dict[str, Any]:
        profile = self.profile
        kwargs: Dict[str, Any] = {
            "host": profile.host,
            "port": profile.port,
            "user": profile.username or "default",
            "password": profile.password,
            "client_name": CLIENT_NAME,
            "connect_timeout": self.deadline.timeout(CONNECT_TIMEOUT_SECONDS),
            "send_receive_timeout": self.deadline.timeout(SEND_RECEIVE_TIMEOUT_SECONDS),
            "sync_request_timeout": self.deadline.timeout(CONNECT_TIMEOUT_SECONDS),
        }
        if profile.database:
            kwargs["database"] = profile.database
        if profile.use_tls:
            # no certificate management; TLS is encryption only
            kwargs["secure"] = True
            kwargs["verify"] = False
        return kwargs

    def _settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        max_execution_time = self.deadline.max_execution_time()
        if max_execution_time is not None:
            settings["max_execution_time"] = max_execution_time
        return settings

    def _translate(self, exc: BaseException) -> Exception:
        if isinstance(exc, driver_errors.SocketTimeoutError) or self.deadline.expired():
            return QueryTimeoutError("query timed out: %s" % describe_exception(exc))
        if getattr(exc, "code", None) == TIMEOUT_EXCEEDED_CODE:
            return QueryTimeoutError(describe_exception(exc))
        if isinstance(exc, EOFError):
            return ConnectivityError(
                "connection to %s closed: %s" % (self.profile.address, describe_exception(exc))
            )
        return ExecutionError(describe_exception(exc))
