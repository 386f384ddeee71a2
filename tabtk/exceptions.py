# tabtk/exceptions.py
"""
Exceptions raised by tabtk.

Every error carries the context needed to diagnose it (table, column, row index,
statement or path) both as attributes and in its message.
"""

import builtins
from typing import Any, Optional


class TransferError(Exception):
    """Base class for all tabtk errors."""


class ConnectionError(TransferError, builtins.ConnectionError):
    """Opening or re-opening a database connection failed."""

    def __init__(self, message: str, profile=None):
        super().__init__(message)
        self.profile = profile


class NotConnectedError(TransferError):
    """An operation needed a live connection and there was none."""

    def __init__(self, kind: Any = 'primary'):
        self.kind = getattr(kind, 'value', kind)
        super().__init__(f"No live {self.kind} connection. Call connect() first.")


class CursorBusyError(TransferError):
    """A row cursor still holds the connection's statement slot."""

    def __init__(self, kind: Any = 'primary'):
        self.kind = getattr(kind, 'value', kind)
        super().__init__(
            f"The {self.kind} connection has an open row cursor. "
            f"Drain or close it before running another statement."
        )


class NoResultSetError(TransferError):
    """A statement that was expected to return rows did not."""

    def __init__(self, statement: str):
        self.statement = statement
        super().__init__(f"Statement did not return a result set. Send a query returning rows: {statement}")


class ProcedureError(TransferError):
    """A stored routine produced no return value or a non-integer one."""

    def __init__(self, procedure: str, value: Any = None, reason: Optional[str] = None):
        self.procedure = procedure
        self.value = value
        if reason is None:
            reason = 'no return value' if value is None else f'non-integer return value {value!r}'
        super().__init__(f"Procedure '{procedure}' produced {reason}")


class SchemaMismatchError(TransferError):
    """A destination column could not be matched to a source field."""

    def __init__(self, column: Optional[str], table: Optional[str] = None, detail: Optional[str] = None):
        self.column = column
        self.table = table
        if column is None:
            msg = f"Table '{table}' schema mismatch"
        elif table:
            msg = f"No source field for column '{column}' of table '{table}'"
        else:
            msg = f"No source field for column '{column}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class TypeCoercionError(TransferError):
    """A source value could not be converted to its column's declared type."""

    def __init__(self, row_index: int, column: str, value: Any, target_type: str,
                 reason: Optional[str] = None):
        self.row_index = row_index
        self.column = column
        self.value = value
        self.target_type = target_type
        self.reason = reason
        msg = f"Row {row_index}, column '{column}': cannot convert {value!r} to {target_type}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class BulkLoadError(TransferError):
    """A bulk copy into a destination table failed part way through."""

    def __init__(self, table: str, rows_sent: int, cause: BaseException):
        self.table = table
        self.rows_sent = rows_sent
        self.cause = cause
        super().__init__(
            f"Bulk load into '{table}' failed after {rows_sent:,} rows were sent: "
            f"{cause.__class__.__name__}: {cause}"
        )


class ExportIOError(TransferError):
    """Writing a flat file or sheet failed."""

    def __init__(self, target: Any, cause: BaseException):
        self.target = str(target)
        self.cause = cause
        super().__init__(f"Export to {self.target} failed: {cause.__class__.__name__}: {cause}")


class UnsupportedFormatError(TransferError):
    """The file format code or extension is not one the workbook host can handle."""

    def __init__(self, code: Any, detail: Optional[str] = None):
        self.code = code
        msg = f"File type not valid: {code!r}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class WorkbookNotOpenError(TransferError):
    """A sheet export was requested with no workbook open."""

    def __init__(self):
        super().__init__("No workbook is open. Call create_workbook() or open_workbook() first.")
