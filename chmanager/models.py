from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class QueryStats:
    execution_time_ms: int
    rows_read: int = 0
    bytes_read: int = 0
    memory_peak: int = 0
    parts_read: int = 0
    marks_read: int = 0
    from_log: bool = False


@dataclass
class QueryResult:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    stats: Optional[QueryStats] = None


@dataclass
class CompareResult:
    query1_stats: QueryStats
    query2_stats: QueryStats


@dataclass
class TableMeta:
    name: str
    engine: str


@dataclass
class TableSchemaColumn:
    name: str
    type: str


@dataclass
class TableSchema:
    name: str
    columns: List[TableSchemaColumn] = field(default_factory=list)


@dataclass
class TableDefinition:
    schema: TableSchema
    create_sql: str
