import logging
from typing import List, Optional

from .client import ClickHouseClient
from .compare import compare_queries
from .config import ConnectionProfile, ToolConfig, with_database
from .deadline import Deadline
from .errors import ChManagerError, ConnectivityError, QueryTimeoutError, UnknownConnectionError
from .models import CompareResult, QueryResult, QueryStats, TableDefinition, TableMeta

logger = logging.getLogger(__name__)

STATUS_ONLINE = "Online"
STATUS_OFFLINE = "Offline"
STATUS_NOT_FOUND = "Not Found"
CREATE_SQL_PLACEHOLDER = "-- Failed to fetch create SQL"


class ConnectionManager:
    """
    Operations addressed by configured connection name.
    """

    def __init__(self, config: ToolConfig, client: Optional[ClickHouseClient] = None) -> None:
        self.config = config
        self.client = client or ClickHouseClient()

    def list_connections(self) -> List[ConnectionProfile]:
        return list(self.config.connections.values())

    def get_profile(self, name: Optional[str] = None) -> ConnectionProfile:
        key = name or self.config.default_connection
        if not key:
            raise UnknownConnectionError("No connection given and no default_connection configured")
        profile = self.config.connections.get(key)
        if profile is None:
            raise UnknownConnectionError("Connection not configured: %s" % key)
        return profile

    def get_connection_status(self, name: Optional[str] = None) -> str:
        try:
            profile = self.get_profile(name)
        except UnknownConnectionError:
            return STATUS_NOT_FOUND
        try:
            self.client.ping(profile, self._deadline())
        except (ConnectivityError, QueryTimeoutError) as exc:
            logger.info("connection %s is offline: %s", profile.name or profile.address, exc)
            return STATUS_OFFLINE
        return STATUS_ONLINE

    def get_server_info(self, name: Optional[str] = None) -> str:
        return self.client.get_server_info(self.get_profile(name), self._deadline())

    def get_databases(self, name: Optional[str] = None) -> List[str]:
        return self.client.get_databases(self.get_profile(name), self._deadline())

    def get_tables(self, name: Optional[str] = None, database: Optional[str] = None) -> List[TableMeta]:
        profile = with_database(self.get_profile(name), database)
        return self.client.get_tables(profile, self._deadline())

    def get_schema(
        self, table: str, name: Optional[str] = None, database: Optional[str] = None
    ) -> TableDefinition:
        profile = with_database(self.get_profile(name), database)
        deadline = self._deadline()
        schema = self.client.get_schema(profile, table, deadline)
        try:
            create_sql = self.client.get_create_sql(profile, table, deadline)
        except ChManagerError as exc:
            logger.warning("cannot fetch create SQL for %s: %s", table, exc)
            create_sql = CREATE_SQL_PLACEHOLDER
        return TableDefinition(schema=schema, create_sql=create_sql)

    def execute_query(self, sql: str, name: Optional[str] = None) -> QueryResult:
        return self.client.execute_query_with_results(self.get_profile(name), sql, self._deadline())

    def execute_query_stats(self, sql: str, name: Optional[str] = None) -> QueryStats:
        return self.client.execute_query_with_stats(self.get_profile(name), sql, self._deadline())

    def compare_queries(self, query1: str, query2: str, name: Optional[str] = None) -> CompareResult:
        return compare_queries(
            self.client, self.get_profile(name), query1, query2, self._deadline()
        )

    def _deadline(self) -> Deadline:
        return Deadline.after(self.config.timeout_seconds)
