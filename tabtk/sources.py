# tabtk/sources.py
"""
Row sources for bulk loads.

A source knows where its rows live and opens its own Reader on demand, so the
file or workbook is read independently of any database connection and can be
released on every exit path.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .defaults import settings
from .readers import DelimitedReader, Reader, sheet_reader
from .record import Record

logger = logging.getLogger(__name__)


class RowSource(ABC):
    """
    Lazily opened, single-pass supplier of rows.

    Iterating a source opens its reader on first use. ``close()`` releases the
    reader and may be called any number of times.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._reader: Optional[Reader] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self) -> Iterator[Record]:
        return iter(self.open())

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.path}')"

    @property
    def is_open(self) -> bool:
        return self._reader is not None and not self._reader.closed

    @property
    def headers(self) -> List[str]:
        return self.open().headers

    @property
    def row_count(self) -> int:
        return self._reader.row_count if self._reader is not None else 0

    @abstractmethod
    def _open_reader(self) -> Reader:
        pass

    def open(self) -> Reader:
        """Open the reader, or return the one already open."""
        if self._reader is None:
            self._reader = self._open_reader()
            logger.debug(f"Opened {self!r}")
        return self._reader

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            logger.debug(f"Closed {self!r} after {self._reader.row_count:,} rows")


class DelimitedFileSource(RowSource):
    """
    Delimited text file, pipe separated by default.

    Parameters
    ----------
    path : str or Path
        File to read
    delimiter : str, default '|'
        Single field separator character
    has_header : bool, default True
        First line holds the field names
    encoding : str, default 'utf-8-sig'
        Text encoding. The -sig variant drops a leading byte order mark.
    null_values : str or collection, optional
        Field values to read as NULL. Defaults to ``settings['null_string']``, the text
        flat file exports write for NULL, so exported files load back with their NULLs.
        Pass an empty tuple to keep every value as text.
    quoting : int, optional
        csv quoting constant, see :class:`~tabtk.readers.DelimitedReader`
    """

    def __init__(self, path, delimiter: str = '|', has_header: bool = True, encoding: str = 'utf-8-sig',
                 null_values=None, quoting: Optional[int] = None):
        super().__init__(path)
        if not delimiter or len(delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self.has_header = has_header
        self.encoding = encoding
        self.null_values = {settings.get('null_string', '')} if null_values is None else null_values
        self.quoting = quoting

    def _open_reader(self) -> Reader:
        fp = open(self.path, encoding=self.encoding, newline='')
        try:
            return DelimitedReader(fp, delimiter=self.delimiter, has_header=self.has_header,
                                   quoting=self.quoting, null_values=self.null_values)
        except Exception:
            fp.close()
            raise


class WorksheetSource(RowSource):
    """
    One worksheet of an .xlsx, .xlsm or .xls workbook. Row 1 holds the field names.

    Parameters
    ----------
    path : str or Path
        Workbook to read
    sheet_name : str, optional
        Worksheet to read. The first sheet is used when omitted.
    """

    def __init__(self, path, sheet_name: Optional[str] = None, null_values=None):
        super().__init__(path)
        self.sheet_name = sheet_name
        self.null_values = null_values

    def __repr__(self):
        sheet = f", '{self.sheet_name}'" if self.sheet_name else ''
        return f"WorksheetSource('{self.path}'{sheet})"

    def _open_reader(self) -> Reader:
        return sheet_reader(self.path, self.sheet_name, null_values=self.null_values)
