# tabtk/exporter.py
"""
Exports query results to delimited flat files and worksheets.
"""

import logging
from pathlib import Path
from typing import Union

from .exceptions import ExportIOError, TransferError
from .workbook import WorkbookDocument
from .writers import DelimitedWriter, SheetManager

logger = logging.getLogger(__name__)


class Delimiter:
    """
    Delimiter presets for flat file exports.

    - PIPE: '|' [default]
    - TAB: '\\t'
    - COMMA: ','
    """
    PIPE = '|'
    TAB = '\t'
    COMMA = ','
    DEFAULT = PIPE

    @classmethod
    def values(cls):
        return [cls.PIPE, cls.TAB, cls.COMMA]


class FlatFileSink:
    """Delimited text file target. The file is created or truncated on export."""

    def __init__(self, path: Union[str, Path], delimiter: str = Delimiter.DEFAULT, encoding: str = 'utf-8'):
        if not delimiter or len(delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
        self.path = Path(path)
        self.delimiter = delimiter
        self.encoding = encoding

    def __repr__(self):
        return f"FlatFileSink('{self.path}', delimiter={self.delimiter!r})"


class SheetSink:
    """Named worksheet in an open workbook. The document is saved after export only if ``save`` is set."""

    def __init__(self, document: WorkbookDocument, name: str, save: bool = False):
        SheetManager.validate_name(name)
        self.document = document
        self.name = name
        self.save = save

    def __repr__(self):
        return f"SheetSink({self.document!r}, '{self.name}', save={self.save})"


class TabularExporter:
    """
    Writes a result set to a flat file or worksheet.

    The cursor handed to :meth:`export` is always closed when the export
    finishes, whether it succeeds or fails.

    Parameters
    ----------
    sheet_manager : SheetManager, optional
        Sheet formatting rules. A default SheetManager is used when omitted.

    Example
    -------
    ::

        exporter = TabularExporter()
        cursor = executor.execute_query("SELECT id, name FROM airbenders")
        exporter.export(cursor, FlatFileSink('airbenders.txt'))            # pipe delimited

        result = executor.fetch_static("SELECT id, name FROM airbenders")
        exporter.export(result, SheetSink(document, 'Air Nomads', save=True))
    """

    def __init__(self, sheet_manager: SheetManager = None):
        self.sheet_manager = sheet_manager or SheetManager()

    def export(self, cursor, sink) -> int:
        """
        Write every row of ``cursor`` to ``sink``.

        Parameters
        ----------
        cursor : RowCursor or StaticResultSet
            Rows to export. Closed on return.
        sink : FlatFileSink or SheetSink
            Destination

        Returns
        -------
        int
            Number of data rows written

        Raises
        ------
        ExportIOError
            If the file or workbook cannot be written
        """
        try:
            if isinstance(sink, FlatFileSink):
                return self._export_flat_file(cursor, sink)
            elif isinstance(sink, SheetSink):
                return self._export_sheet(cursor, sink)
            raise TypeError(f"Unsupported sink: {sink!r}")
        finally:
            cursor.close()

    def _export_flat_file(self, cursor, sink: FlatFileSink) -> int:
        writer = DelimitedWriter(cursor, sink.path, delimiter=sink.delimiter, encoding=sink.encoding)
        return writer.write()

    def _export_sheet(self, cursor, sink: SheetSink) -> int:
        document = sink.document
        if document.closed:
            raise ValueError(f"{document!r} is closed")
        manager = self.sheet_manager
        if hasattr(cursor, 'move_first'):
            cursor.move_first()
        try:
            ref = manager.find_or_create(document.workbook, sink.name)
            manager.write_header(ref.worksheet, cursor.columns())
            count = manager.paste(ref.worksheet, (2, 1), cursor)
            manager.remove_default_sheets(document.workbook, keep=[ref.name])
            manager.autosize_columns(ref.worksheet)
            for worksheet in document.workbook.worksheets:
                worksheet.sheet_view.tabSelected = worksheet is ref.worksheet
            document.workbook.active = ref.worksheet
        except TransferError:
            raise
        except Exception as e:
            logger.error(f"Error writing sheet '{sink.name}': {e}")
            raise ExportIOError(f"{document.path or 'workbook'}[{sink.name}]", e) from e
        logger.info(f"Wrote {count} rows to sheet '{ref.name}'")
        if sink.save:
            manager.save(document)
        return count
