import logging
from typing import Any, Dict, Optional, Tuple

import clickhouse_connect
from clickhouse_connect.driver.exceptions import ClickHouseError

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


class HttpSession:
    """
    One HTTP(S) session to ClickHouse via clickhouse-connect.
    Results are read in full by the driver, so the cursor never fails mid-stream.
    """

    def __init__(self, profile: ConnectionProfile, deadline: Optional[Deadline] = None) -> None:
        self.profile = profile
        self.deadline = deadline or Deadline()
        self._client = None

    def connect(self):
        if self._client is not None:
            return self._client
        self.deadline.check("opening a session")
        try:
            client = clickhouse_connect.get_client(**self._client_kwargs())
        except (ClickHouseError, OSError) as exc:
            if self.deadline.expired():
                raise QueryTimeoutError(
                    "timed out connecting to %s" % self.profile.address
                ) from exc
            raise ConnectivityError(
                "cannot connect to %s: %s" % (self.profile.address, describe_exception(exc))
            ) from exc
        logger.debug("http session open to %s", self.profile.address)
        self._client = client
        return client

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        finally:
            self._client = None
            logger.debug("http session to %s closed", self.profile.address)

    def ping(self) -> None:
        client = self.connect()
        try:
            alive = client.ping()
        except (ClickHouseError, OSError) as exc:
            raise ConnectivityError(
                "ping to %s failed: %s" % (self.profile.address, describe_exception(exc))
            ) from exc
        if not alive:
            raise ConnectivityError("ping to %s failed" % self.profile.address)

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        query_id: Optional[str] = None,
    ) -> ResultCursor:
        client = self.connect()
        self.deadline.check("executing the query")
        settings = self._settings()
        if query_id:
            settings["query_id"] = query_id
        try:
            result = client.query(sql, parameters=params, settings=settings)
        except (ClickHouseError, OSError) as exc:
            raise self._translate(exc) from exc
        return ResultCursor(
            columns=list(result.column_names),
            column_types=[column_type.name for column_type in result.column_types],
            rows=result.result_rows,
            deadline=self.deadline,
        )

    def query_row(
        self, sql: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        client = self.connect()
        self.deadline.check("executing the query")
        try:
            result = client.query(sql, parameters=params, settings=self._settings())
        except (ClickHouseError, OSError) as exc:
            raise self._translate(exc) from exc
        rows = result.result_rows
        if not rows:
            return None
        return tuple(rows[0])

    def execute(self, sql: str) -> None:
        client = self.connect()
        self.deadline.check("executing the statement")
        try:
            client.command(sql, settings=self._settings())
        except (ClickHouseError, OSError) as exc:
            raise self._translate(exc) from exc

    def _client_kwargs(self) -> Dict[str, Any]:
        profile = self.profile
        kwargs: Dict[str, Any] = {
            "host": profile.host,
            "port": profile.port,
            "username": profile.username or "default",
            "password": profile.password,
            "client_name": CLIENT_NAME,
            "connect_timeout": self.deadline.timeout(CONNECT_TIMEOUT_SECONDS),
            "send_receive_timeout": self.deadline.timeout(SEND_RECEIVE_TIMEOUT_SECONDS),
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
        message = describe_exception(exc)
        if self.deadline.expired() or "TIMEOUT_EXCEEDED" in message:
            return QueryTimeoutError("query timed out: %s" % message)
        return ExecutionError(message)
