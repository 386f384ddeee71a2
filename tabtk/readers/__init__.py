# tabtk/readers/__init__.py

"""
File readers feeding bulk loads.

Supports delimited text files and Excel (XLS/XLSX) worksheets with a
consistent Reader interface.
"""

from .base import Reader
from .delimited import DelimitedReader
from .excel import XLSReader, XLSXReader, open_workbook, get_sheet, sheet_reader

__all__ = [
    'Reader', 'DelimitedReader', 'XLSReader', 'XLSXReader',
    'open_workbook', 'get_sheet', 'sheet_reader'
]
