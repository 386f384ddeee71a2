# tabtk/executor.py
"""
Statement execution against the connections held by a ConnectionManager.
"""

import logging
from contextlib import closing
from decimal import Decimal
from typing import Any, Dict, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from .connection import ConnectionKind, ConnectionManager
from .cursors import RowCursor, StaticResultSet
from .exceptions import CursorBusyError, NoResultSetError, NotConnectedError, ProcedureError
from .utils import ParamStyle, prepare_params, process_sql_parameters

logger = logging.getLogger(__name__)


class Parameter(NamedTuple):
    """Named bind value. The name is written without the leading ':' or '@'."""
    name: str
    value: Any


Params = Union[None, Mapping[str, Any], Sequence[Any], Sequence[Parameter]]


def _named_values(params) -> Optional[Dict[str, Any]]:
    """Dict of bind values if ``params`` is named, None if it is positional."""
    if isinstance(params, Mapping):
        return {str(k).lstrip(':@'): v for k, v in params.items()}
    if params and all(isinstance(p, Parameter) for p in params):
        return {p.name.lstrip(':@'): p.value for p in params}
    return None


def _to_return_code(procedure: str, value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise ProcedureError(procedure, value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)) and value == int(value):
        return int(value)
    raise ProcedureError(procedure, value)


class StatementExecutor:
    """
    Runs statements on the primary or cursor connection of a ConnectionManager.

    Statements are written with ``:name`` placeholders, which are rewritten to
    the driver's paramstyle before execution. The ``params`` argument of every
    method accepts None, a mapping of names to values, a sequence of
    :class:`Parameter` pairs, or a plain sequence of positional values.

    A RowCursor returned by :meth:`execute_query` holds the primary
    connection's statement slot until it is drained or closed. Running another
    statement on that connection in the meantime raises CursorBusyError.

    Parameters
    ----------
    manager : ConnectionManager
        Source of the connections
    column_case : str, optional
        Column name case for returned cursors and result sets

    Example
    -------
    ::

        executor = StatementExecutor(manager)
        count = executor.execute_scalar("SELECT COUNT(*) FROM benders WHERE nation = :nation",
                                        {'nation': 'Water Tribe'})
        executor.execute_command("UPDATE benders SET rank = :rank WHERE id = :id",
                                 [Parameter('rank', 'Master'), Parameter('id', 7)])
    """

    def __init__(self, manager: ConnectionManager, column_case: Optional[str] = None):
        self.manager = manager
        self.column_case = column_case
        self._active: Dict[ConnectionKind, Optional[RowCursor]] = {kind: None for kind in ConnectionKind}

    def acquire(self, kind: ConnectionKind = ConnectionKind.PRIMARY):
        """
        Return the live raw connection for ``kind``.

        Raises NotConnectedError if the primary connection is not live and
        CursorBusyError if a RowCursor still holds the slot.
        """
        if not self.manager.is_live(ConnectionKind.PRIMARY):
            raise NotConnectedError(ConnectionKind.PRIMARY)
        active = self._active[kind]
        if active is not None:
            if not active.closed:
                raise CursorBusyError(kind)
            self._active[kind] = None
        return self.manager.require(kind)

    def is_busy(self, kind: ConnectionKind = ConnectionKind.PRIMARY) -> bool:
        active = self._active[kind]
        return active is not None and not active.closed

    def close_cursors(self) -> None:
        """Close any RowCursor still holding a statement slot."""
        for kind, row_cursor in list(self._active.items()):
            if row_cursor is not None:
                row_cursor.close()
            self._active[kind] = None

    def _release(self, kind: ConnectionKind, row_cursor: RowCursor) -> None:
        if self._active[kind] is row_cursor:
            self._active[kind] = None

    def _bind(self, text: str, params: Params) -> Tuple[str, Any]:
        """Rewrite ``text`` for the driver's paramstyle and arrange the bind values."""
        if params is None:
            return text, None
        paramstyle = self.manager.paramstyle
        named = _named_values(params)
        sql, param_names = process_sql_parameters(text, paramstyle)
        if named is not None:
            return sql, prepare_params(paramstyle, param_names, named)

        values = tuple(params)
        if not param_names:
            # already written in the driver's own style
            return text, values
        if len(param_names) != len(values):
            raise ValueError(f"Statement has {len(param_names)} placeholders but {len(values)} values were given")
        if paramstyle in ParamStyle.named_styles():
            return sql, dict(zip(param_names, values))
        return sql, values

    def _execute(self, cursor, text: str, params: Params) -> None:
        sql = text
        try:
            sql, bind_vars = self._bind(text, params)
            logger.debug(f'Query:\n{sql}')
            if bind_vars is None:
                cursor.execute(sql)
            else:
                logger.debug(f'Bind vars:\n{bind_vars}')
                cursor.execute(sql, bind_vars)
        except Exception:
            logger.error(
                f"Error executing statement\n"
                f"SQL: {sql}\n"
                f"Parameters: {params}"
            )
            raise

    def execute_query(self, text: str, params: Params = None) -> RowCursor:
        """
        Run a row-returning statement on the primary connection.

        Returns
        -------
        RowCursor
            Forward-only cursor. Drain or close it to free the connection.

        Raises
        ------
        NoResultSetError
            If the statement does not produce a result set
        """
        connection = self.acquire(ConnectionKind.PRIMARY)
        cursor = connection.cursor()
        try:
            self._execute(cursor, text, params)
            if cursor.description is None:
                raise NoResultSetError(text)
        except Exception:
            cursor.close()
            raise
        row_cursor = RowCursor(cursor, statement=text, column_case=self.column_case,
                               on_close=lambda rc: self._release(ConnectionKind.PRIMARY, rc))
        self._active[ConnectionKind.PRIMARY] = row_cursor
        return row_cursor

    def execute_scalar(self, text: str, params: Params = None) -> Any:
        """First column of the first row, or None when there are no rows."""
        connection = self.acquire(ConnectionKind.PRIMARY)
        with closing(connection.cursor()) as cursor:
            self._execute(cursor, text, params)
            if cursor.description is None:
                return None
            row = cursor.fetchone()
        return None if row is None else row[0]

    def execute_command(self, text: str, params: Params = None) -> int:
        """Run a statement for effect, commit and return the affected row count."""
        connection = self.acquire(ConnectionKind.PRIMARY)
        with closing(connection.cursor()) as cursor:
            self._execute(cursor, text, params)
            rowcount = cursor.rowcount
        connection.commit()
        logger.debug(f"Command affected {rowcount} rows")
        return rowcount

    def _procedure_sql(self, name: str, params: Params) -> Tuple[str, Any]:
        paramstyle = self.manager.paramstyle
        named = _named_values(params) if params is not None else None
        if named is not None:
            names, values = list(named.keys()), tuple(named.values())
        else:
            names, values = [], tuple(params or ())
        placeholders = ParamStyle.placeholders(paramstyle, len(values))

        if self.manager.server_type == 'sqlserver':
            if names:
                args = ', '.join(f"@{n} = {ph}" for n, ph in zip(names, placeholders))
            else:
                args = ', '.join(placeholders)
            sql = (
                "SET NOCOUNT ON; "
                "DECLARE @return_value int; "
                f"EXEC @return_value = {name} {args}; "
                "SELECT @return_value"
            )
        else:
            if names and self.manager.server_type == 'postgres':
                args = ', '.join(f"{n} => {ph}" for n, ph in zip(names, placeholders))
            else:
                args = ', '.join(placeholders)
            sql = f"SELECT {name}({args})"
        # every paramstyle accepts a tuple for its positional placeholders
        return sql, values

    def execute_procedure(self, name: str, params: Params = None) -> int:
        """
        Invoke a stored routine and return its integer return code.

        On SQL Server the procedure's RETURN value is captured. Elsewhere the
        routine is called as a function and its result is the return code.

        Raises
        ------
        ProcedureError
            If the routine yields no value or a non-integer one
        """
        connection = self.acquire(ConnectionKind.PRIMARY)
        sql, bind_vars = self._procedure_sql(name, params)
        value = None
        with closing(connection.cursor()) as cursor:
            try:
                logger.debug(f'Procedure call:\n{sql}')
                cursor.execute(sql, bind_vars)
                while True:
                    if cursor.description is not None:
                        row = cursor.fetchone()
                        if row is not None:
                            value = row[0]
                    if self.manager.server_type != 'sqlserver' or not cursor.nextset():
                        break
            except Exception:
                logger.error(
                    f"Error executing procedure {name}\n"
                    f"SQL: {sql}\n"
                    f"Parameters: {params}"
                )
                raise
        connection.commit()
        return_code = _to_return_code(name, value)
        logger.info(f"Procedure {name} returned {return_code}")
        return return_code

    def fetch_static(self, text: str, params: Params = None) -> StaticResultSet:
        """
        Run a query on the cursor connection and materialize the whole result.

        The cursor connection is opened on first use. The statement is released
        before this returns.
        """
        connection = self.acquire(ConnectionKind.CURSOR)
        with closing(connection.cursor()) as cursor:
            self._execute(cursor, text, params)
            if cursor.description is None:
                raise NoResultSetError(text)
            result = StaticResultSet.from_cursor(cursor, statement=text, column_case=self.column_case)
        logger.debug(f"Materialized {result.record_count} rows on the cursor connection")
        return result
