import logging
from typing import Any, Dict, List, Tuple

from .cursor import ResultCursor
from .errors import ChManagerError, ExecutionError
from .values import allocate_slots, scan_row

logger = logging.getLogger(__name__)


def decode_rows(cursor: ResultCursor) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Decode a cursor of unknown shape into (columns, rows).

    Columns keep the engine's projection order and rows keep emission order.
    The cursor is closed on every path; on failure no rows are returned.
    """
    try:
        columns = list(cursor.columns)
        slots = allocate_slots(columns, cursor.column_types)
        rows: List[Dict[str, Any]] = []
        for raw in cursor:
            values = scan_row(slots, columns, raw)
            row: Dict[str, Any] = {}
            for column, value in zip(columns, values):
                row[column] = value
            rows.append(row)
    finally:
        cursor.close()

    raise_terminal_error(cursor)
    logger.debug("decoded %d rows x %d columns", len(rows), len(columns))
    return columns, rows


def raise_terminal_error(cursor: ResultCursor) -> None:
    """Raise the error that ended the cursor's stream, if any."""
    error = cursor.error
    if error is None:
        return
    if isinstance(error, ChManagerError):
        raise error
    raise ExecutionError(str(error)) from error
