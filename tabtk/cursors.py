# tabtk/cursors.py
"""
Result cursors returned by the statement executor.

RowCursor wraps a live DB-API cursor and streams rows forward-only.
StaticResultSet holds a fully materialized, disconnected result that can be
rewound and pasted into a sheet as one block.
"""

import logging
from typing import Any, Callable, Iterator, List, Optional, Sequence

from .defaults import settings
from .record import Record, record_class

logger = logging.getLogger(__name__)
__all__ = ['ColumnCase', 'RowCursor', 'StaticResultSet']


class ColumnCase:
    """
    Column name case transformation options for result sets.

    - UPPER: Convert to uppercase (USER_ID)
    - LOWER: Convert to lowercase (user_id)
    - TITLE: Convert to title case (User_Id)
    - PRESERVE: Keep original case from database [default]
    """
    UPPER = 'upper'
    LOWER = 'lower'
    TITLE = 'title'
    PRESERVE = 'preserve'
    DEFAULT = PRESERVE

    @classmethod
    def values(cls):
        return [cls.UPPER, cls.LOWER, cls.TITLE, cls.PRESERVE]

    @classmethod
    def apply(cls, names: Sequence[str], case: Optional[str]) -> List[str]:
        if case == cls.LOWER:
            return [n.lower() for n in names]
        elif case == cls.UPPER:
            return [n.upper() for n in names]
        elif case == cls.TITLE:
            return [n.title() for n in names]
        return list(names)


def _column_names(description) -> List[str]:
    names = []
    for i, col in enumerate(description or ()):
        name = col[0]
        names.append(name if name else f'col_{i + 1}')
    return names


class RowCursor:
    """
    Forward-only, single-pass cursor that returns Record rows.

    A RowCursor owns the DB-API cursor that produced it and holds its
    connection's statement slot until it is drained or closed. Iterating to
    the end closes it automatically, and ``close()`` may be called any number
    of times.

    Parameters
    ----------
    cursor
        The underlying DB-API cursor, already executed
    statement : str, optional
        Statement text, kept for error messages and logging
    column_case : str, optional
        How to present column names. Defaults to ``settings['default_column_case']``
    on_close : callable, optional
        Called once with this cursor when it closes. The executor uses it to
        release the statement slot.

    Example
    -------
    ::

        with engine.execute_query("SELECT id, name FROM airbenders") as cursor:
            for row in cursor:
                print(row.id, row.name)
    """

    def __init__(self,
                 cursor,
                 statement: Optional[str] = None,
                 column_case: Optional[str] = None,
                 on_close: Optional[Callable[['RowCursor'], None]] = None):
        self._cursor = cursor
        self.statement = statement
        if column_case is None:
            column_case = settings.get('default_column_case', ColumnCase.DEFAULT)
        self.column_case = column_case
        self._on_close = on_close
        self._closed = False
        self._row_num = 0
        self.description = cursor.description
        self.record_factory = record_class(self.columns(), 'Record')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self) -> Iterator[Record]:
        return self

    def __next__(self) -> Record:
        row = self.fetchone()
        if row is None:
            raise StopIteration
        return row

    def __repr__(self):
        state = 'closed' if self._closed else 'open'
        return f"RowCursor({state}, rows_read={self._row_num})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def row_count(self) -> int:
        """Number of rows read so far."""
        return self._row_num

    @property
    def rowcount(self) -> int:
        return getattr(self._cursor, 'rowcount', -1)

    def columns(self, case: Optional[str] = None) -> List[str]:
        """Return list of column names."""
        if case not in ColumnCase.values():
            case = self.column_case
        return ColumnCase.apply(_column_names(self.description), case)

    def fetchone(self) -> Optional[Record]:
        """Fetch the next row, closing the cursor once the rows run out."""
        if self._closed:
            return None
        row = self._cursor.fetchone()
        if row is None:
            self.close()
            return None
        self._row_num += 1
        return self.record_factory(*row)

    def fetchmany(self, size: Optional[int] = None) -> List[Record]:
        """Fetch the next set of rows."""
        if self._closed:
            return []
        if size is None:
            size = getattr(self._cursor, 'arraysize', None) or settings.get('default_batch_size', 1000)
        rows = self._cursor.fetchmany(size)
        if not rows:
            self.close()
            return []
        self._row_num += len(rows)
        return [self.record_factory(*row) for row in rows]

    def fetchall(self) -> List[Record]:
        """Fetch all remaining rows and close the cursor."""
        if self._closed:
            return []
        try:
            rows = [self.record_factory(*row) for row in self._cursor.fetchall()]
        finally:
            self.close()
        self._row_num += len(rows)
        return rows

    def close(self) -> None:
        """Release the underlying cursor and the statement slot. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._cursor.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing cursor: {e}")
        finally:
            if self._on_close is not None:
                self._on_close(self)
                self._on_close = None


class StaticResultSet:
    """
    Disconnected, fully materialized result set.

    Produced on the cursor connection for sheet export. All rows are read up
    front and the statement is released, so the result can be rewound with
    ``move_first()`` and pasted into a worksheet as one block.

    Attributes
    ----------
    record_count : int
        Total number of rows
    statement : str
        Statement text that produced the result
    """

    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[Any]], statement: Optional[str] = None):
        self._columns = list(columns)
        factory = record_class(self._columns, 'Record')
        self._rows = [row if isinstance(row, factory) else factory(*row) for row in rows]
        self.statement = statement
        self._position = 0
        self._closed = False

    @classmethod
    def from_cursor(cls, cursor, statement: Optional[str] = None,
                    column_case: Optional[str] = None) -> 'StaticResultSet':
        """Materialize an executed DB-API cursor."""
        if column_case is None:
            column_case = settings.get('default_column_case', ColumnCase.DEFAULT)
        columns = ColumnCase.apply(_column_names(cursor.description), column_case)
        return cls(columns, cursor.fetchall(), statement)

    def __iter__(self) -> Iterator[Record]:
        return self

    def __next__(self) -> Record:
        if self._position >= len(self._rows):
            raise StopIteration
        row = self._rows[self._position]
        self._position += 1
        return row

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self):
        return f"StaticResultSet(columns={self._columns!r}, record_count={self.record_count})"

    @property
    def record_count(self) -> int:
        return len(self._rows)

    @property
    def eof(self) -> bool:
        return self._position >= len(self._rows)

    @property
    def closed(self) -> bool:
        return self._closed

    def columns(self, case: Optional[str] = None) -> List[str]:
        return ColumnCase.apply(self._columns, case)

    def move_first(self) -> None:
        """Rewind to the first row."""
        self._position = 0

    def rows(self) -> List[Record]:
        """All rows regardless of the current position."""
        return list(self._rows)

    def close(self) -> None:
        self._closed = True
