# tabtk/__init__.py
"""
TabTK - Tabular Transfer ToolKit

Moves tabular data between a relational database, delimited flat files and
Excel workbooks:
- Query results to pipe, tab or comma delimited files
- Query results to formatted worksheets (header row, frozen panes, sized columns)
- Bulk loads from delimited files and worksheets, checked against the destination table
- Stored procedure calls with integer return codes
- YAML-based connection profiles with password encryption

Basic usage::

    import tabtk

    with tabtk.connect('warehouse') as engine:
        engine.write_query_to_pipefile("SELECT * FROM benders", 'benders.txt')

        engine.create_workbook('benders.xlsx')
        engine.write_query_to_sheet("SELECT id, name, nation FROM benders", 'Benders')

        engine.bulk_load_file('recruits.txt', 'staging.recruits')
        rc = engine.execute_procedure('dbo.promote_recruits', {'min_rank': 3})

Direct connections::

    from tabtk import TransferEngine, ConnectionProfile, Credentials

    engine = TransferEngine()
    engine.connect(ConnectionProfile('sql01', 'BaSingSe', Credentials('aang', 'appa')))
"""

__version__ = '0.3.0'
__author__ = 'Scott Bailey <scottrbailey@gmail.com>'

from .config import connect, set_config_file
from .connection import ConnectionKind, ConnectionManager, ConnectionProfile, Credentials
from .cursors import ColumnCase, RowCursor, StaticResultSet
from .engine import TransferEngine
from .exceptions import (TransferError, ConnectionError, NotConnectedError, CursorBusyError, NoResultSetError,
                         ProcedureError, SchemaMismatchError, TypeCoercionError, BulkLoadError,
                         ExportIOError, UnsupportedFormatError, WorkbookNotOpenError)
from .executor import Parameter, StatementExecutor
from .exporter import Delimiter, FlatFileSink, SheetSink, TabularExporter
from .logging_utils import setup_logging, errors_logged, cleanup_old_logs
from .workbook import ExcelHost, FileFormat, WorkbookDocument
from . import exceptions
from . import readers
from . import writers

__all__ = [
    'connect',
    'set_config_file',
    'TransferEngine',
    'ConnectionKind',
    'ConnectionManager',
    'ConnectionProfile',
    'Credentials',
    'ColumnCase',
    'RowCursor',
    'StaticResultSet',
    'Parameter',
    'StatementExecutor',
    'Delimiter',
    'FlatFileSink',
    'SheetSink',
    'TabularExporter',
    'ExcelHost',
    'FileFormat',
    'WorkbookDocument',
    'exceptions',
    'readers',
    'writers',
    'setup_logging',
    'errors_logged',
    'cleanup_old_logs'
]
