# tabtk/bulk.py

"""
Bulk copy of file and worksheet rows into a destination table.

BulkCopyChannel is the batched write path bound to the primary connection.
BulkLoader drives a complete load: schema discovery, row adaptation, batching,
commit, and cleanup on every exit path.
"""

import datetime as dt
import logging
import re
import time
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence

from .adapter import RowAdapter, ValidatingRowAdapter
from .connection import ConnectionKind
from .defaults import settings
from .exceptions import BulkLoadError
from .schema import fetch_table_schema
from .utils import ParamStyle, batch_iterable, quote_identifier, validate_identifier

logger = logging.getLogger(__name__)


def _sqlite_value(value):
    """sqlite3 has no adapter for Decimal and deprecates its date adapters."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dt.datetime):
        return value.isoformat(' ')
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    return value


def _table_sql(table: str) -> str:
    """Table name for the INSERT statement. Plain names are left for the database to fold."""
    validate_identifier(table.replace('[', '').replace(']', ''))
    if re.match(r'^[\w.\[\]]+$', table):
        return table
    return quote_identifier(table)


class BulkCopyChannel:
    """
    Destination-table-bound batched insert on the primary connection.

    Uses the fastest executemany path the driver offers: psycopg2's
    ``execute_batch`` or pyodbc's ``fast_executemany``. While open, the
    connection's command timeout is raised to ``bulk_copy_timeout`` where the
    driver exposes one.

    Parameters
    ----------
    executor : StatementExecutor
        Supplies the primary connection
    table : str
        Destination table
    columns : list of str
        Destination columns in the order values will be supplied
    batch_size : int, optional
        Rows per executemany call. Defaults to ``settings['default_batch_size']``
    timeout : int, optional
        Seconds. Defaults to ``settings['bulk_copy_timeout']``
    """

    def __init__(self, executor, table: str, columns: Sequence[str],
                 batch_size: Optional[int] = None, timeout: Optional[int] = None):
        self.connection = executor.acquire(ConnectionKind.PRIMARY)
        self.manager = executor.manager
        self.table = table
        self.columns = list(columns)
        self.batch_size = batch_size or settings.get('default_batch_size', 1000)
        self.timeout = timeout if timeout is not None else settings.get('bulk_copy_timeout')
        self.rows_sent = 0
        self._closed = False
        self.insert_sql = self._create_insert_statement()
        self._cursor = self.connection.cursor()
        self._bulk_method = self._detect_bulk_method()
        self._adapt_value = _sqlite_value if self.manager.server_type == 'sqlite' else None
        self._saved_timeout = self._apply_timeout()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.abort()
        self.close()

    def __repr__(self):
        return f"BulkCopyChannel({self.table!r}, rows_sent={self.rows_sent})"

    @property
    def closed(self) -> bool:
        return self._closed

    def _create_insert_statement(self) -> str:
        columns_str = ', '.join(quote_identifier(validate_identifier(col)) for col in self.columns)
        params_str = ', '.join(ParamStyle.placeholders(self.manager.paramstyle, len(self.columns)))
        return f'INSERT INTO {_table_sql(self.table)} ({columns_str}) VALUES ({params_str})'

    def _detect_bulk_method(self) -> Callable:
        """Return the fastest bulk execution method for this connection's driver."""
        adapter = getattr(self.manager.interface, '__name__', '')
        if adapter == 'psycopg2':
            from psycopg2.extras import execute_batch

            def psycopg_batch(cur, sql, argslist):
                return execute_batch(cur, sql, argslist, page_size=self.batch_size)

            logger.debug("Bulk copy using psycopg2.extras.execute_batch")
            return psycopg_batch
        elif adapter == 'pyodbc':
            if hasattr(self._cursor, 'fast_executemany') and not getattr(self._cursor, 'fast_executemany', False):
                self._cursor.fast_executemany = True
                logger.debug("pyodbc: enabled fast_executemany for bulk copy")

        # Fallback for everything else (SQLite, pymssql, etc.)
        return lambda cur, sql, argslist: cur.executemany(sql, argslist)

    def _apply_timeout(self):
        attr = self.manager.driver_info.get('command_timeout_attr')
        if not attr or not self.timeout or not hasattr(self.connection, attr):
            return None
        saved = getattr(self.connection, attr)
        setattr(self.connection, attr, self.timeout)
        return attr, saved

    def write(self, rows: List[tuple]) -> int:
        """Send one batch of rows. Returns the number sent."""
        if self._closed:
            raise ValueError(f"Bulk copy channel for {self.table} is closed")
        if not rows:
            return 0
        if self._adapt_value is not None:
            rows = [tuple(self._adapt_value(v) for v in row) for row in rows]
        if len(rows) == 1:
            self._cursor.execute(self.insert_sql, rows[0])
        else:
            self._bulk_method(self._cursor, self.insert_sql, rows)
        self.rows_sent += len(rows)
        return len(rows)

    def commit(self) -> None:
        self.connection.commit()

    def abort(self) -> None:
        """Roll back the open transaction. Rollback errors are logged and discarded."""
        try:
            self.connection.rollback()
        except Exception as e:
            logger.warning(f"Rollback of bulk copy into {self.table} failed: {e}")

    def close(self) -> None:
        """Release the cursor and restore the command timeout. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._cursor.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing bulk copy cursor: {e}")
        if self._saved_timeout is not None:
            attr, saved = self._saved_timeout
            try:
                setattr(self.connection, attr, saved)
            except Exception as e:
                logger.warning(f"Could not restore connection {attr}: {e}")


class BulkLoader:
    """
    Copies rows from a RowSource into a destination table.

    Parameters
    ----------
    executor : StatementExecutor
        Supplies the primary connection and runs schema discovery
    batch_size : int, optional
        Rows per batch. Defaults to ``settings['default_batch_size']``
    timeout : int, optional
        Bulk copy timeout in seconds. Defaults to ``settings['bulk_copy_timeout']``

    Example
    -------
    ::

        loader = BulkLoader(executor, batch_size=5000)
        with DelimitedFileSource('fire_nation_roster.txt') as source:
            count = loader.load(source, 'soldiers')
    """

    def __init__(self, executor, batch_size: Optional[int] = None, timeout: Optional[int] = None):
        self.executor = executor
        self.batch_size = batch_size or settings.get('default_batch_size', 1000)
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self.timeout = timeout

    def load(self,
             source: Iterable,
             destination_table: str,
             column_mappings=None,
             validate: bool = True,
             positional: Optional[bool] = None) -> int:
        """
        Copy every row of ``source`` into ``destination_table``.

        Parameters
        ----------
        source : RowSource, Reader or iterable of rows
            Closed when the load finishes, whether it succeeds or not
        destination_table : str
            Table to insert into
        column_mappings : list of ColumnMapping, optional
            Explicit source to destination mapping. Replaces name matching.
        validate : bool, default True
            Convert values to the destination column types and fail on the
            first value that does not fit. When False rows are sent as read.
        positional : bool, optional
            Match fields to columns by position. Defaults to True for sources
            without a header line and to name matching otherwise.

        Returns
        -------
        int
            Number of rows copied

        Raises
        ------
        NotConnectedError
            If there is no live primary connection
        BulkLoadError
            If anything fails after the load starts. The cause is chained and
            available as ``error.cause``. Rows already sent may or may not
            remain in the destination.
        """
        if positional is None:
            if getattr(source, 'has_header', True) is False:
                positional = True
            elif not validate:
                positional = None
            else:
                positional = False
        adapter_class = ValidatingRowAdapter if validate else RowAdapter
        adapter = adapter_class(source, column_mappings=column_mappings, positional=positional)
        channel = None
        start = time.monotonic()
        try:
            self.executor.acquire(ConnectionKind.PRIMARY)
            try:
                schema = fetch_table_schema(self.executor, destination_table)
                adapter.bind(schema)
                channel = BulkCopyChannel(self.executor, destination_table, adapter.column_names,
                                          self.batch_size, self.timeout)
                logger.info(f"Starting bulk copy into {destination_table}")
                logger.debug(f"Using INSERT statement: {channel.insert_sql}")
                for batch in batch_iterable(adapter, self.batch_size):
                    channel.write(batch)
                    logger.debug(f"Sent {channel.rows_sent:,} rows to {destination_table}")
                channel.commit()
            except Exception as e:
                rows_sent = channel.rows_sent if channel is not None else 0
                if channel is not None:
                    channel.abort()
                logger.error(f"Bulk copy into {destination_table} failed after {rows_sent:,} rows: {e}")
                raise BulkLoadError(destination_table, rows_sent, e) from e
        finally:
            if channel is not None:
                channel.close()
            adapter.close()

        took = time.monotonic() - start
        logger.info(f"Bulk copied {channel.rows_sent:,} rows into {destination_table} in {took:.2f}s")
        return channel.rows_sent
