# tabtk/writers/base.py
"""
Base class for writers with common file handling and data extraction patterns.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Union

from ..exceptions import ExportIOError
from ..utils import to_string

logger = logging.getLogger(__name__)


class BaseWriter(ABC):
    """
    Abstract base class for writers that export query results.

    Subclasses implement ``_write_data()``. The base class works out the column
    names and row iterator from the data, opens and closes the output file,
    and turns operating system and text encoding errors into ExportIOError.

    Parameters
    ----------
    data
        RowCursor, StaticResultSet, or a list of Records, dicts or sequences
    filename : str or Path
        Output file
    columns : list of str, optional
        Column names for list-of-lists data
    encoding : str, default 'utf-8'
        File encoding
    """

    def __init__(self,
                 data,
                 filename: Union[str, Path],
                 columns: Optional[List[str]] = None,
                 encoding: str = 'utf-8'):
        self.data = data
        self.filename = filename
        self.encoding = encoding
        self._row_num = 0
        self.data_iterator, self.columns = self._get_data_iterator(data, columns)

    @property
    def row_count(self) -> int:
        """ Returns the number of rows written."""
        return self._row_num

    def _get_file_handle(self, mode='w'):
        return open(self.filename, mode, encoding=self.encoding, newline='')

    def _get_data_iterator(self, data, columns: Optional[List[str]] = None) -> Tuple[Iterator, List[str]]:
        """
        Get data iterator and column names.

        Args:
            data: Input data (cursor, result set, list, etc.)
            columns: Optional column names for list-of-lists data

        Returns:
            Tuple of (iterator, column_names)
        """
        if hasattr(data, 'columns') and callable(data.columns):
            # RowCursor and StaticResultSet
            return iter(data), list(columns or data.columns())
        elif hasattr(data, 'description') and hasattr(data, 'fetchone'):
            # raw DB-API cursor
            return iter(data.fetchone, None), list(columns or [col[0] for col in data.description])
        elif isinstance(data, (list, tuple)):
            if not data:
                if columns is None:
                    raise ValueError("No data to export and no columns given")
                return iter(()), list(columns)
            first = data[0]
            if hasattr(first, 'keys'):
                # dict and Record - use intrinsic keys
                data_columns = list(first.keys())
            elif hasattr(first, '_fields'):
                data_columns = list(first._fields)
            elif columns:
                if len(columns) != len(first):
                    raise ValueError(f"Column count ({len(columns)}) must match data width ({len(first)})")
                data_columns = list(columns)
            else:
                data_columns = [f'col_{x}' for x in range(1, len(first) + 1)]
            return iter(data), data_columns
        raise TypeError(f"Cannot export data of type {type(data).__name__}")

    def _extract_row_values(self, record) -> List[Any]:
        """Values of ``record`` in column order."""
        if isinstance(record, dict):
            return [record.get(col) for col in self.columns]
        values = list(record)
        if len(values) < len(self.columns):
            values.extend([None] * (len(self.columns) - len(values)))
        return values[:len(self.columns)]

    def to_string(self, obj: Any) -> str:
        return to_string(obj)

    @abstractmethod
    def _write_data(self, file_obj) -> None:
        """
        Write the actual data. Subclasses implement format-specific logic.

        Args:
            file_obj: File object to write to
        """
        pass

    def write(self) -> int:
        """
        Main entry point for writing data.

        Returns:
            Number of rows written

        Raises:
            ExportIOError: If the file cannot be opened or written
        """
        try:
            file_obj = self._get_file_handle()
        except OSError as e:
            logger.error(f"Cannot open {self.filename} for writing: {e}")
            raise ExportIOError(self.filename, e) from e
        try:
            self._write_data(file_obj)
            logger.info(f"Wrote {self._row_num} rows to {self.filename}")
            return self._row_num
        except (OSError, UnicodeError) as e:
            logger.error(f"Error writing {self.filename} after {self._row_num} rows: {e}")
            raise ExportIOError(self.filename, e) from e
        except Exception as e:
            logger.error(f"Error writing data: {e}")
            raise
        finally:
            try:
                file_obj.close()
            except (OSError, UnicodeError) as e:
                logger.warning(f"Ignoring error while closing {self.filename}: {e}")
