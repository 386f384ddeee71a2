# tabtk/readers/delimited.py

import csv
import logging
from typing import Any, Iterator, List, Optional, TextIO

from .base import Reader

logger = logging.getLogger(__name__)


class DelimitedReader(Reader):
    """
    Reader for delimited text files (pipe, tab, comma or any single character).

    Parameters
    ----------
    fp : file-like object
        Open text file. Closed when the reader closes.
    delimiter : str, default '|'
        Single field separator character
    has_header : bool, default True
        First line holds the field names. When False, fields are named
        ``col_1``, ``col_2``, ... and matched to columns by position.
    headers : list of str, optional
        Field names to use instead of the header line
    quoting : int, optional
        csv quoting constant. Defaults to csv.QUOTE_MINIMAL for comma files and
        csv.QUOTE_NONE otherwise, since pipe and tab exports are never quoted.
    null_values : str, list, tuple, or set, optional
        Values to convert to None
    **kwargs
        Additional Reader options (skip_rows, n_rows, add_row_num)

    Example
    -------
    ::

        with open('earth_kingdom.txt', encoding='utf-8-sig', newline='') as fp:
            for row in DelimitedReader(fp, delimiter='|'):
                print(row.name, row.city)
    """

    def __init__(self,
                 fp: TextIO,
                 delimiter: str = '|',
                 has_header: bool = True,
                 headers: Optional[List[str]] = None,
                 quoting: Optional[int] = None,
                 null_values=None,
                 **kwargs):
        if not delimiter or len(delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
        super().__init__(headers=headers, null_values=null_values, **kwargs)
        self.fp = fp
        self.delimiter = delimiter
        self.has_header = has_header
        if hasattr(fp, 'encoding') and fp.encoding == 'utf-8':
            # a BOM would end up in the first column name
            logger.warning("utf-8 encoding detected. Consider using 'utf-8-sig' encoding instead.")

        if quoting is None:
            quoting = csv.QUOTE_MINIMAL if delimiter == ',' else csv.QUOTE_NONE
        if delimiter == '\t' and quoting == csv.QUOTE_MINIMAL:
            self._rdr = csv.reader(fp, dialect=csv.excel_tab)
        else:
            self._rdr = csv.reader(fp, delimiter=delimiter, quoting=quoting)
        self._first_row: Optional[List[str]] = None

    def _read_headers(self) -> List[str]:
        """
        Header line of the file, the provided headers, or generated positional names.

        Raises:
            ValueError: If the file is empty and no headers are provided.
        """
        if self.has_header:
            try:
                file_headers = next(self._rdr)
            except StopIteration:
                if self._raw_headers is not None:
                    return self._raw_headers
                raise ValueError(f"Empty file: {self.source}")
            return self._raw_headers if self._raw_headers is not None else file_headers
        if self._raw_headers is not None:
            return self._raw_headers
        # no header line, so peek at the first row for the field count
        self._first_row = next(self._rdr, None)
        width = len(self._first_row) if self._first_row is not None else 0
        return [f'col_{i + 1}' for i in range(width)]

    def _generate_rows(self) -> Iterator[List[Any]]:
        if self._first_row is not None:
            yield self._first_row
            self._first_row = None
        for row in self._rdr:
            # skip blank lines
            if row:
                yield row

    def _cleanup(self):
        """Close the file pointer."""
        if self.fp and hasattr(self.fp, 'close'):
            self.fp.close()
