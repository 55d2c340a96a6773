import logging
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from .deadline import Deadline

logger = logging.getLogger(__name__)


class ResultCursor:
    """
    Driver-neutral view over one result set.

    `columns` and `column_types` describe the projection in engine order.
    Iterating yields raw row tuples. A driver error raised while streaming
    ends the iteration and is kept in `error` for the caller to check once the
    cursor is exhausted.
    """

    def __init__(
        self,
        columns: Sequence[str],
        column_types: Sequence[str],
        rows: Iterable[Tuple[Any, ...]],
        stream_errors: Tuple[type, ...] = (),
        translate_error: Optional[Callable[[BaseException], BaseException]] = None,
        on_close: Optional[Callable[[], None]] = None,
        deadline: Optional[Deadline] = None,
    ) -> None:
        self.columns: List[str] = list(columns)
        self.column_types: List[str] = list(column_types)
        self.error: Optional[BaseException] = None
        self.closed = False
        self.row_count = 0
        self._rows = iter(rows)
        self._stream_errors = stream_errors
        self._translate_error = translate_error
        self._on_close = on_close
        self._deadline = deadline or Deadline()

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        while not self.closed:
            self._deadline.check("reading the next row")
            try:
                row = next(self._rows)
            except StopIteration:
                return
            except self._stream_errors as exc:
                self.error = self._translate_error(exc) if self._translate_error else exc
                logger.debug("cursor stopped after %d rows: %s", self.row_count, self.error)
                return
            self.row_count += 1
            yield row

    def drain(self) -> int:
        for _ in self:
            pass
        return self.row_count

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "ResultCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
