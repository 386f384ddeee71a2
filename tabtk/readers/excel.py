# tabtk/readers/excel.py
import datetime as dt
import logging
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

import openpyxl
import xlrd

from ..exceptions import UnsupportedFormatError
from .base import Reader

logger = logging.getLogger(__name__)

XLSX_SUFFIXES = ('.xlsx', '.xlsm')
XLS_SUFFIXES = ('.xls',)


def _is_blank(row) -> bool:
    return all(val is None or (isinstance(val, str) and not val.strip()) for val in row)


def convert_xls_cell(cell, datemode: int) -> Any:
    """Convert an xlrd cell value to an appropriate Python type.

    Args:
        cell: xlrd cell object to convert.
        datemode: The workbook's date mode (1900 or 1904 based).

    Returns:
        Converted value (datetime, time, bool, int, float, str, or None).
    """
    if cell is None or cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    elif cell.ctype == xlrd.XL_CELL_DATE:
        try:
            tm_tuple = xlrd.xldate_as_tuple(cell.value, datemode)
            if any(tm_tuple[:3]):
                return dt.datetime(*tm_tuple)
            else:
                return dt.time(*tm_tuple[3:])
        except (ValueError, TypeError):
            return None
    elif cell.ctype == xlrd.XL_CELL_NUMBER:
        if cell.value == int(cell.value):
            return int(cell.value)
        return cell.value
    elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return str(cell.value)


class XLSXReader(Reader):
    """Class to iterate over an Excel .xlsx worksheet using openpyxl."""

    def __init__(self, worksheet, workbook=None, headers: Optional[List[str]] = None, **kwargs):
        """Initialize XLSXReader for reading Excel .xlsx files.

        Args:
            worksheet: openpyxl worksheet to read from. Row 1 holds the headers.
            workbook: Workbook the sheet belongs to. Closed with the reader when given.
            headers: Optional list of header names to use instead of reading row 1.
            **kwargs: Additional Reader options (skip_rows, n_rows, null_values, add_row_num).

        Raises:
            TypeError: If worksheet is not an openpyxl worksheet.
        """
        if not hasattr(worksheet, 'iter_rows'):
            raise TypeError('worksheet must be an openpyxl worksheet or use XLSReader')
        super().__init__(headers=headers, **kwargs)
        self.ws = worksheet
        self.wb = workbook
        self._rows = None

    def _row_iter(self):
        if self._rows is None:
            self._rows = self.ws.iter_rows(values_only=True)
        return self._rows

    def _read_headers(self) -> List[str]:
        header_row = next(self._row_iter(), None)
        if self._raw_headers is not None:
            return self._raw_headers
        if header_row is None:
            raise ValueError(f"Empty worksheet: {self.ws.title}")
        # trailing empty header cells are formatting, not columns
        headers = list(header_row)
        while headers and headers[-1] is None:
            headers.pop()
        return headers

    def _generate_rows(self) -> Iterator[List[Any]]:
        for row in self._row_iter():
            if not _is_blank(row):
                yield list(row)

    def _cleanup(self):
        if self.wb is not None and hasattr(self.wb, 'close'):
            self.wb.close()


class XLSReader(Reader):
    """Class to iterate over a legacy Excel .xls worksheet using xlrd."""

    def __init__(self, worksheet, workbook=None, headers: Optional[List[str]] = None, **kwargs):
        """Initialize XLSReader for reading Excel .xls files.

        Args:
            worksheet: xlrd.Sheet object to read from. Row 0 holds the headers.
            workbook: Book the sheet belongs to. Released with the reader when given.
            headers: Optional list of header names to use instead of reading row 0.
            **kwargs: Additional Reader options (skip_rows, n_rows, null_values, add_row_num).

        Raises:
            TypeError: If worksheet is not an xlrd.Sheet.
        """
        if worksheet.__class__.__name__ != 'Sheet':
            raise TypeError('worksheet must be of type xlrd.Sheet or use XLSXReader')
        super().__init__(headers=headers, **kwargs)
        self.ws = worksheet
        self.wb = workbook
        self.datemode = worksheet.book.datemode

    def _read_headers(self) -> List[str]:
        if self._raw_headers is not None:
            return self._raw_headers
        if self.ws.nrows < 1:
            raise ValueError(f"Empty worksheet: {self.ws.name}")
        return [self._convert_cell_value(cell) for cell in self.ws.row(0)]

    def _generate_rows(self) -> Iterator[List[Any]]:
        for row_num in range(1, self.ws.nrows):  # 0-based, row 0 is the header
            row = [self._convert_cell_value(cell) for cell in self.ws.row(row_num)]
            if not _is_blank(row):
                yield row

    def _convert_cell_value(self, cell) -> Any:
        return convert_xls_cell(cell, self.datemode)

    def _cleanup(self):
        if self.wb is not None and hasattr(self.wb, 'release_resources'):
            self.wb.release_resources()


def open_workbook(filename: Union[str, Path], read_only: bool = True):
    """Open an Excel workbook using openpyxl for .xlsx/.xlsm or xlrd for .xls.

    Args:
        filename: Path to the Excel file.
        read_only: Open .xlsx files in openpyxl's streaming read-only mode.

    Returns:
        Workbook object (openpyxl.Workbook or xlrd.Book).

    Raises:
        UnsupportedFormatError: If the extension is not an Excel one.
    """
    suffix = Path(filename).suffix.lower()
    if suffix in XLSX_SUFFIXES:
        return openpyxl.load_workbook(filename, read_only=read_only, data_only=True)
    elif suffix in XLS_SUFFIXES:
        return xlrd.open_workbook(str(filename))
    raise UnsupportedFormatError(suffix or str(filename), 'expected .xlsx, .xlsm or .xls')


def get_sheet(wb, name: Optional[str] = None):
    """Get a worksheet by name, or the first sheet when name is None.

    A trailing '$' (``Sheet1$`` as OLE DB spells sheet names) is ignored.

    Raises:
        ValueError: If the workbook has no sheet with that name.
        TypeError: If workbook type is not supported.
    """
    if name is not None:
        name = name[:-1] if name.endswith('$') else name
    if hasattr(wb, 'worksheets'):
        if name is None:
            return wb.worksheets[0]
        if name not in wb.sheetnames:
            raise ValueError(f"Worksheet '{name}' not found. Available: {', '.join(wb.sheetnames)}")
        return wb[name]
    elif hasattr(wb, 'sheet_by_name'):
        if name is None:
            return wb.sheet_by_index(0)
        if name not in wb.sheet_names():
            raise ValueError(f"Worksheet '{name}' not found. Available: {', '.join(wb.sheet_names())}")
        return wb.sheet_by_name(name)
    raise TypeError(f"Unknown workbook type: {wb.__class__.__name__}")


def sheet_reader(filename: Union[str, Path], sheet_name: Optional[str] = None, **kwargs) -> Reader:
    """Open ``filename`` and return a reader over one of its sheets. The reader owns the workbook."""
    wb = open_workbook(filename)
    try:
        ws = get_sheet(wb, sheet_name)
        reader_class = XLSReader if hasattr(wb, 'sheet_by_name') else XLSXReader
        reader = reader_class(ws, workbook=wb, **kwargs)
    except Exception:
        if hasattr(wb, 'close'):
            wb.close()
        elif hasattr(wb, 'release_resources'):
            wb.release_resources()
        raise
    reader.source = str(filename)
    return reader
