# tabtk/engine.py
"""
TransferEngine: one object that owns a database's connections and a workbook,
and moves tabular data between them and flat files.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from .bulk import BulkLoader
from .connection import ConnectionKind, ConnectionManager, ConnectionProfile, Credentials
from .cursors import RowCursor, StaticResultSet
from .exceptions import WorkbookNotOpenError
from .executor import Params, StatementExecutor
from .exporter import Delimiter, FlatFileSink, SheetSink, TabularExporter
from .sources import DelimitedFileSource, WorksheetSource
from .workbook import ExcelHost, FileFormat, WorkbookDocument
from .writers import SheetManager

logger = logging.getLogger(__name__)


class TransferEngine:
    """
    Facade over connections, statement execution, exports, bulk loads and workbooks.

    A TransferEngine exclusively owns at most one primary connection, one cursor
    connection and one open workbook. Use it as a context manager so all three
    are released however the block exits.

    Parameters
    ----------
    batch_size : int, optional
        Rows per bulk copy batch. Defaults to ``settings['default_batch_size']``
    column_case : str, optional
        Column name case for query results (see :class:`~tabtk.cursors.ColumnCase`)
    sheet_manager : SheetManager, optional
        Sheet formatting rules for sheet exports

    Example
    -------
    ::

        from tabtk import TransferEngine, ConnectionProfile

        with TransferEngine() as engine:
            engine.connect(ConnectionProfile(server='sql01', catalog='Omashu'))   # integrated auth
            engine.write_query_to_pipefile("SELECT * FROM citizens", 'citizens.txt')

            engine.create_workbook('census.xlsx')
            engine.write_query_to_sheet("SELECT id, name FROM citizens", 'Citizens')

            engine.bulk_load_file('new_arrivals.txt', 'staging.arrivals')
    """

    def __init__(self, batch_size: Optional[int] = None, column_case: Optional[str] = None,
                 sheet_manager: Optional[SheetManager] = None):
        self.manager = ConnectionManager()
        self.executor = StatementExecutor(self.manager, column_case=column_case)
        self.exporter = TabularExporter(sheet_manager)
        self.loader = BulkLoader(self.executor, batch_size=batch_size)
        self._host: Optional[ExcelHost] = None
        self.document: Optional[WorkbookDocument] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        target = self.manager.profile.describe() if self.manager.profile else 'unconnected'
        return f"TransferEngine({target}, workbook={self.document.path if self.document else None})"

    # connections

    @property
    def profile(self) -> Optional[ConnectionProfile]:
        return self.manager.profile

    def connect(self, profile: ConnectionProfile, credentials: Optional[Credentials] = None) -> ConnectionProfile:
        """Connect to ``profile``, closing any current connections first. See ConnectionManager.connect."""
        self.executor.close_cursors()
        return self.manager.connect(profile, credentials)

    def terminate(self) -> None:
        """Close open cursors and both connections. Never raises."""
        self.executor.close_cursors()
        self.manager.terminate()

    def is_live(self, kind: ConnectionKind = ConnectionKind.PRIMARY) -> bool:
        return self.manager.is_live(kind)

    # statements

    def execute_query(self, text: str, params: Params = None) -> RowCursor:
        return self.executor.execute_query(text, params)

    def execute_scalar(self, text: str, params: Params = None) -> Any:
        return self.executor.execute_scalar(text, params)

    def execute_command(self, text: str, params: Params = None) -> int:
        return self.executor.execute_command(text, params)

    def execute_procedure(self, name: str, params: Params = None) -> int:
        return self.executor.execute_procedure(name, params)

    def fetch_static(self, text: str, params: Params = None) -> StaticResultSet:
        return self.executor.fetch_static(text, params)

    # workbooks

    @property
    def host(self) -> ExcelHost:
        """Workbook host, started on first use."""
        if self._host is None or not self._host.running:
            self._host = ExcelHost()
        return self._host

    def create_workbook(self, path: Optional[Union[str, Path]] = None,
                        file_format: Union[FileFormat, int, str] = FileFormat.XLSX) -> WorkbookDocument:
        """Create a new workbook and make it the engine's workbook, closing the previous one."""
        self.close_workbook()
        self.document = self.host.new_workbook(path, file_format)
        return self.document

    def open_workbook(self, path: Union[str, Path]) -> WorkbookDocument:
        """Open an existing workbook and make it the engine's workbook, closing the previous one."""
        self.close_workbook()
        self.document = self.host.open_workbook(path)
        return self.document

    def save_workbook(self, path: Optional[Union[str, Path]] = None,
                      file_format: Optional[Union[FileFormat, int, str]] = None) -> None:
        """Save the engine's workbook, to ``path`` in ``file_format`` when given."""
        if self.document is None or self.document.closed:
            raise WorkbookNotOpenError()
        if path is None and file_format is None:
            self.document.save()
        elif path is None and self.document.path is None:
            raise ValueError("Workbook has no file name. Pass a path to save_workbook().")
        else:
            self.document.save_as(path or self.document.path, file_format)

    def close_workbook(self) -> None:
        """Close the engine's workbook without saving."""
        if self.document is not None:
            self.document.close()
            self.document = None

    def _abandon_workbook(self, document: WorkbookDocument) -> None:
        document.close()
        if document is self.document:
            self.document = None
        if self._host is not None:
            self._host.quit()
            self._host = None

    # transfers

    def write_query_to_file(self, query: str, path: Union[str, Path], delimiter: str = Delimiter.TAB,
                            params: Params = None) -> int:
        """
        Export a query's rows to a delimited text file, tab separated by default.

        Returns:
            Number of data rows written
        """
        sink = FlatFileSink(path, delimiter)
        cursor = self.executor.execute_query(query, params)
        return self.exporter.export(cursor, sink)

    def write_query_to_pipefile(self, query: str, path: Union[str, Path], params: Params = None) -> int:
        """Export a query's rows to a pipe delimited text file."""
        return self.write_query_to_file(query, path, Delimiter.PIPE, params)

    def write_query_to_sheet(self, query: str, sheet_name: str, params: Params = None,
                             document: Optional[WorkbookDocument] = None, save: bool = True) -> int:
        """
        Export a query's rows to a worksheet, replacing the sheet if it exists.

        The query runs on the cursor connection. On failure the workbook is
        closed without saving and the error propagates.

        Raises:
            WorkbookNotOpenError: If there is no open workbook
            NoResultSetError: If the query does not return rows
        """
        document = document or self.document
        if document is None or document.closed:
            raise WorkbookNotOpenError()
        if save and document.path is None:
            raise ValueError("Workbook has no file name. Create it with a path or call save_workbook(path) first.")
        sink = SheetSink(document, sheet_name, save=save)
        try:
            result = self.executor.fetch_static(query, params)
            return self.exporter.export(result, sink)
        except Exception as e:
            logger.error(f"Sheet export to '{sheet_name}' failed, closing {document.path or 'workbook'}: {e}")
            self._abandon_workbook(document)
            raise

    def bulk_load_file(self, path: Union[str, Path], table: str, delimiter: str = Delimiter.PIPE,
                       has_header: bool = True, column_mappings=None, validate: bool = True,
                       null_values=None) -> int:
        """
        Bulk copy a delimited text file into ``table``. Returns the number of rows copied.

        Fields equal to ``settings['null_string']`` load as NULL unless other
        ``null_values`` are given.
        """
        source = DelimitedFileSource(path, delimiter=delimiter, has_header=has_header, null_values=null_values)
        return self.loader.load(source, table, column_mappings=column_mappings, validate=validate)

    def bulk_load_sheet(self, path: Union[str, Path], table: str, sheet_name: Optional[str] = None,
                        column_mappings=None, validate: bool = True) -> int:
        """Bulk copy a worksheet into ``table``. Returns the number of rows copied."""
        source = WorksheetSource(path, sheet_name)
        return self.loader.load(source, table, column_mappings=column_mappings, validate=validate)

    def close(self) -> None:
        """Terminate connections, close the workbook and shut down the workbook host."""
        self.terminate()
        self.close_workbook()
        if self._host is not None:
            self._host.quit()
            self._host = None
