# tabtk/writers/__init__.py
"""
Writers for query results: delimited flat files and worksheets.
"""

from .base import BaseWriter
from .delimited import DelimitedWriter, to_delimited
from .excel import SheetManager, SheetRef

__all__ = ['BaseWriter', 'DelimitedWriter', 'to_delimited', 'SheetManager', 'SheetRef']
