import json
from typing import Any, Dict, List, Sequence

from .models import CompareResult, QueryResult, QueryStats, TableDefinition, TableMeta

MAX_CELL_WIDTH = 60


def format_stats(stats: QueryStats) -> str:
    source = "system.query_log" if stats.from_log else "client timing (query_log miss)"
    parts = [
        "Execution time: %d ms" % stats.execution_time_ms,
        "Rows read: %d" % stats.rows_read,
        "Bytes read: %s" % _human_bytes(stats.bytes_read),
        "Memory peak: %s" % _human_bytes(stats.memory_peak),
        "Parts read: %d" % stats.parts_read,
        "Marks read: %d" % stats.marks_read,
        "Source: %s" % source,
    ]
    return "\n".join(parts)


def format_compare(result: CompareResult) -> str:
    first, second = result.query1_stats, result.query2_stats
    rows = [
        ("execution_time_ms", first.execution_time_ms, second.execution_time_ms),
        ("rows_read", first.rows_read, second.rows_read),
        ("bytes_read", first.bytes_read, second.bytes_read),
        ("memory_peak", first.memory_peak, second.memory_peak),
        ("parts_read", first.parts_read, second.parts_read),
        ("marks_read", first.marks_read, second.marks_read),
        ("from_log", first.from_log, second.from_log),
    ]
    return _table(["metric", "query1", "query2"], [[str(c) for c in row] for row in rows])


def format_result(result: QueryResult) -> str:
    body = [[_cell(row.get(column)) for column in result.columns] for row in result.rows]
    parts = []
    if result.columns:
        parts.append(_table(result.columns, body))
    parts.append("(%d rows)" % len(result.rows))
    if result.stats is not None:
        parts.append(format_stats(result.stats))
    return "\n".join(parts)


def format_tables(tables: Sequence[TableMeta]) -> str:
    return _table(["name", "engine"], [[t.name, t.engine] for t in tables])


def format_definition(definition: TableDefinition) -> str:
    columns = [[c.name, c.type] for c in definition.schema.columns]
    parts = [
        "Table: %s" % definition.schema.name,
        _table(["column", "type"], columns),
        "",
        definition.create_sql.strip(),
    ]
    return "\n".join(parts)


def to_json(data: Any) -> str:
    return json.dumps(_to_dict(data), ensure_ascii=False, indent=2, default=str)


def _to_dict(data: Any) -> Any:
    if hasattr(data, "__dict__"):
        return {
            key: _to_dict(value)
            for key, value in data.__dict__.items()
            if not key.startswith("_") and key != "password"
        }
    if isinstance(data, dict):
        return {str(key): _to_dict(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_to_dict(item) for item in data]
    return data


def _table(headers: Sequence[str], rows: List[List[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))
    lines = [
        " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)),
        "-+-".join("-" * w for w in widths),
    ]
    for row in rows:
        lines.append(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
    return "\n".join(lines)


def _cell(value: Any) -> str:
    if value is None:
        text = "NULL"
    else:
        text = str(value)
    text = text.replace("\n", " ")
    if len(text) > MAX_CELL_WIDTH:
        text = text[: MAX_CELL_WIDTH - 3] + "..."
    return text


def _human_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024.0 or unit == "TiB":
            if unit == "B":
                return "%d B" % value
            return "%.2f %s" % (size, unit)
        size /= 1024.0
    return "%d B" % value
