import logging
from typing import Callable, ContextManager, List, Optional

from .config import ConnectionProfile, with_default_database
from .cursor import ResultCursor
from .deadline import Deadline
from .decoder import decode_rows, raise_terminal_error
from .errors import TableNotFoundError
from .models import QueryResult, QueryStats, TableMeta, TableSchema, TableSchemaColumn
from .session import Session, open_session
from .stats import StatsCorrelator

logger = logging.getLogger(__name__)

SessionOpener = Callable[[ConnectionProfile, Optional[Deadline]], ContextManager[Session]]

SHOW_DATABASES_SQL = "SHOW DATABASES"
TABLES_SQL = "SELECT name, engine FROM system.tables WHERE database = %(database)s"
SHOW_CREATE_TABLE_SQL = "SHOW CREATE TABLE `%s`.`%s`"
COLUMNS_SQL = (
    "SELECT name, type FROM system.columns "
    "WHERE table = %(table)s AND database = %(database)s"
)
SERVER_VERSION_SQL = "SELECT version()"


class ClickHouseClient:
    """
    Engine operations. Every call opens its own session and closes it before
    returning, whatever the outcome.
    """

    def __init__(self, opener: SessionOpener = open_session) -> None:
        self._open = opener

    def ping(self, profile: ConnectionProfile, deadline: Optional[Deadline] = None) -> None:
        with self._open(profile, deadline) as session:
            session.ping()

    def get_databases(
        self, profile: ConnectionProfile, deadline: Optional[Deadline] = None
    ) -> List[str]:
        with self._open(profile, deadline) as session:
            cursor = session.query(SHOW_DATABASES_SQL)
            _, rows = decode_rows(cursor)
        return [str(row["name"]) for row in rows]

    def get_tables(
        self, profile: ConnectionProfile, deadline: Optional[Deadline] = None
    ) -> List[TableMeta]:
        profile = with_default_database(profile)
        with self._open(profile, deadline) as session:
            cursor = session.query(TABLES_SQL, {"database": profile.database})
            _, rows = decode_rows(cursor)
        return [TableMeta(name=row["name"], engine=row["engine"]) for row in rows]

    def get_create_sql(
        self,
        profile: ConnectionProfile,
        table: str,
        deadline: Optional[Deadline] = None,
    ) -> str:
        profile = with_default_database(profile)
        sql = SHOW_CREATE_TABLE_SQL % (_quote_identifier(profile.database), _quote_identifier(table))
        with self._open(profile, deadline) as session:
            row = session.query_row(sql)
        if row is None:
            raise TableNotFoundError("table not found: %s.%s" % (profile.database, table))
        return str(row[0])

    def get_server_info(
        self, profile: ConnectionProfile, deadline: Optional[Deadline] = None
    ) -> str:
        with self._open(profile, deadline) as session:
            row = session.query_row(SERVER_VERSION_SQL)
        return str(row[0]) if row else ""

    def get_schema(
        self,
        profile: ConnectionProfile,
        table: str,
        deadline: Optional[Deadline] = None,
    ) -> TableSchema:
        profile = with_default_database(profile)
        with self._open(profile, deadline) as session:
            cursor = session.query(COLUMNS_SQL, {"table": table, "database": profile.database})
            _, rows = decode_rows(cursor)
        return TableSchema(
            name=table,
            columns=[TableSchemaColumn(name=row["name"], type=row["type"]) for row in rows],
        )

    def execute_query_with_stats(
        self,
        profile: ConnectionProfile,
        sql: str,
        deadline: Optional[Deadline] = None,
    ) -> QueryStats:
        with self._open(profile, deadline) as session:
            correlator = StatsCorrelator(session)
            rows = correlator.run(sql, _drain)
            logger.debug("query_id=%s returned %d rows", correlator.query_id, rows)
            return correlator.collect()

    def execute_query_with_results(
        self,
        profile: ConnectionProfile,
        sql: str,
        deadline: Optional[Deadline] = None,
    ) -> QueryResult:
        with self._open(profile, deadline) as session:
            correlator = StatsCorrelator(session)
            columns, rows = correlator.run(sql, decode_rows)
            stats = correlator.collect()
        return QueryResult(columns=columns, rows=rows, stats=stats)


def _drain(cursor: ResultCursor) -> int:
    count = cursor.drain()
    raise_terminal_error(cursor)
    return count


def _quote_identifier(name: str) -> str:
    return name.replace("\\", "\\\\").replace("`", "\\`")
