# tabtk/writers/delimited.py
"""
Delimited flat file writer for query results.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from .base import BaseWriter

logger = logging.getLogger(__name__)


class DelimitedWriter(BaseWriter):
    """
    Writes one header line and one line per row, fields joined by a single
    delimiter character.

    Values are formatted with :func:`tabtk.utils.to_string` (NULL becomes
    ``settings['null_string']``) and are written as-is: nothing is quoted or
    escaped, so a value containing the delimiter will shift the fields of its
    line. Every line is flushed as soon as it is written, so a partially
    written file always ends on a complete line.

    Parameters
    ----------
    data
        RowCursor, StaticResultSet or list of records
    filename : str or Path
        Output file, created or truncated
    delimiter : str, default '|'
        Single field separator character
    columns : list of str, optional
        Column names for list-of-lists data
    encoding : str, default 'utf-8'
        File encoding
    line_terminator : str, default '\\n'
        End of line sequence

    Example
    -------
    ::

        cursor = engine.execute_query("SELECT id, name FROM airbenders")
        DelimitedWriter(cursor, 'airbenders.txt', delimiter='|').write()
    """

    def __init__(self,
                 data,
                 filename: Union[str, Path],
                 delimiter: str = '|',
                 columns: Optional[List[str]] = None,
                 encoding: str = 'utf-8',
                 line_terminator: str = '\n'):
        if not delimiter or len(delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
        super().__init__(data, filename, columns=columns, encoding=encoding)
        self.delimiter = delimiter
        self.line_terminator = line_terminator

    def _write_line(self, file_obj, values) -> None:
        file_obj.write(self.delimiter.join(values) + self.line_terminator)
        file_obj.flush()

    def _write_data(self, file_obj) -> None:
        self._write_line(file_obj, [str(col) for col in self.columns])
        for record in self.data_iterator:
            self._write_line(file_obj, [self.to_string(v) for v in self._extract_row_values(record)])
            self._row_num += 1


def to_delimited(data, filename: Union[str, Path], delimiter: str = '|', **kwargs) -> int:
    """
    Export a cursor or list of records to a delimited file.

    Example:
        to_delimited(cursor, 'benders.txt')
        to_delimited(cursor, 'benders.tsv', delimiter='\\t')
    """
    return DelimitedWriter(data, filename, delimiter=delimiter, **kwargs).write()
