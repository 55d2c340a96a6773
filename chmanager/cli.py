import argparse
import logging
import sys
from typing import Optional

from . import reporting
from .config import env_override, load_config
from .errors import ChManagerError
from .manager import STATUS_ONLINE, ConnectionManager

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def main(argv: Optional[list] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    cfg = env_override(load_config(args.config))
    if args.timeout is not None:
        cfg.timeout_seconds = args.timeout if args.timeout > 0 else None
    logging.basicConfig(
        level=getattr(logging, (args.log_level or cfg.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    manager = ConnectionManager(cfg)

    try:
        return _dispatch(manager, args)
    except ChManagerError as exc:
        print("ERROR: %s" % exc, file=sys.stderr)
        return 1


def _dispatch(manager: ConnectionManager, args) -> int:
    name = args.connection

    if args.command == "connections":
        profiles = manager.list_connections()
        if args.json:
            print(reporting.to_json(profiles))
        else:
            for profile in profiles:
                print(
                    "%s\t%s\t%s%s"
                    % (profile.name, profile.address, profile.protocol, " (tls)" if profile.use_tls else "")
                )
        return 0

    if args.command == "status":
        status = manager.get_connection_status(name)
        print(reporting.to_json({"status": status}) if args.json else status)
        return 0 if status == STATUS_ONLINE else 1

    if args.command == "info":
        version = manager.get_server_info(name)
        print(reporting.to_json({"version": version}) if args.json else version)
        return 0

    if args.command == "databases":
        databases = manager.get_databases(name)
        print(reporting.to_json(databases) if args.json else "\n".join(databases))
        return 0

    if args.command == "tables":
        tables = manager.get_tables(name, database=args.database)
        print(reporting.to_json(tables) if args.json else reporting.format_tables(tables))
        return 0

    if args.command == "schema":
        definition = manager.get_schema(args.table, name, database=args.database)
        print(reporting.to_json(definition) if args.json else reporting.format_definition(definition))
        return 0

    if args.command == "query":
        result = manager.execute_query(_read_sql(args.sql, args.sql_file, "--sql"), name)
        print(reporting.to_json(result) if args.json else reporting.format_result(result))
        return 0

    if args.command == "stats":
        stats = manager.execute_query_stats(_read_sql(args.sql, args.sql_file, "--sql"), name)
        print(reporting.to_json(stats) if args.json else reporting.format_stats(stats))
        return 0

    if args.command == "compare":
        query1 = _read_sql(args.sql1, args.sql1_file, "--sql1")
        query2 = _read_sql(args.sql2, args.sql2_file, "--sql2")
        result = manager.compare_queries(query1, query2, name)
        print(reporting.to_json(result) if args.json else reporting.format_compare(result))
        return 0

    raise SystemExit("Unknown command: %s" % args.command)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run ad hoc SQL against ClickHouse and inspect execution cost.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default="config.ini",
        help="Path to the INI config with [settings] and [connection:NAME] sections.",
    )
    parser.add_argument(
        "--connection",
        "-c",
        help="Connection name (defaults to settings.default_connection).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Deadline in seconds for the whole operation (0 disables).",
    )
    parser.add_argument("--log-level", help="Override the configured log level.")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("connections", help="List configured connections.")
    sub.add_parser("status", help="Ping the server: Online / Offline / Not Found.")
    sub.add_parser("info", help="Print the server version.")
    sub.add_parser("databases", help="List databases.")

    tables = sub.add_parser("tables", help="List tables with their engines.")
    tables.add_argument("--database", help="Database to list (defaults to the connection's).")

    schema = sub.add_parser("schema", help="Show columns and CREATE statement of a table.")
    schema.add_argument("table", help="Table name.")
    schema.add_argument("--database", help="Database of the table (defaults to the connection's).")

    query = sub.add_parser(
        "query",
        help="Run SQL and print rows plus execution stats.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Examples:
  python3 run.py query --sql "SELECT 1 AS a"
  python3 run.py --json query --sql-file /tmp/q.sql""",
    )
    query.add_argument("--sql", help="SQL text to run.")
    query.add_argument("--sql-file", help="Read SQL from file.")

    stats = sub.add_parser("stats", help="Run SQL, discard rows, print execution stats.")
    stats.add_argument("--sql", help="SQL text to run.")
    stats.add_argument("--sql-file", help="Read SQL from file.")

    compare = sub.add_parser(
        "compare",
        help="Run two queries one after the other and show their stats side by side.",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog="""Examples:
  python3 run.py compare --sql1 'SELECT count() FROM t' --sql2 'SELECT count(x) FROM t'""",
    )
    compare.add_argument("--sql1", help="First SQL text.")
    compare.add_argument("--sql1-file", help="Read the first SQL from file.")
    compare.add_argument("--sql2", help="Second SQL text.")
    compare.add_argument("--sql2-file", help="Read the second SQL from file.")

    return parser


def _read_sql(sql: Optional[str], sql_file: Optional[str], flag: str) -> str:
    if sql:
        return sql.strip()
    if sql_file:
        with open(sql_file, "r", encoding="utf-8") as fp:
            return fp.read().strip()
    raise SystemExit("Provide %s or %s-file." % (flag, flag))


if __name__ == "__main__":
    sys.exit(main())
