# tabtk/readers/base.py

"""
Base class for the file readers that feed bulk loads.

Defines the abstract Reader interface shared by the delimited text and
worksheet readers.
"""

import itertools
import logging
import time

from abc import ABC, abstractmethod
from os import path
from typing import Any, Iterator, List, Optional, Union

from ..record import Record, record_class

logger = logging.getLogger(__name__)


class Reader(ABC):
    """
    Abstract base class for all file readers in tabtk.

    Readers are forward-only, single-pass iterators over the rows of one file
    or worksheet. Each row is returned as a :class:`~tabtk.record.Record` keyed
    by the source headers, so a row adapter can find fields by name or by
    position. Readers are context managers and release their file or workbook
    on ``close()``.

    Parameters
    ----------
    headers : list of str, optional
        Header names to use instead of reading them from the source
    skip_rows : int, default 0
        Number of data rows to skip after the headers
    n_rows : int, optional
        Maximum number of rows to read, or None for all rows
    null_values : str, list, tuple, or set, optional
        Values to convert to None. Common examples: '\\N', 'NULL', ''
    add_row_num : bool, default False
        Add a '_row_num' field holding the 1-based data row number

    Example
    -------
    ::

        class MyReader(Reader):
            def __init__(self, fp, **kwargs):
                super().__init__(**kwargs)
                self.fp = fp

            def _read_headers(self):
                return ['id', 'name', 'element']

            def _generate_rows(self):
                for line in self.fp:
                    yield line.rstrip('\\n').split('|')
    """

    def __init__(self,
                 headers: Optional[List[str]] = None,
                 skip_rows: int = 0,
                 n_rows: Optional[int] = None,
                 null_values: Union[str, List[str], tuple, set, None] = None,
                 add_row_num: bool = False):
        self.add_row_num = add_row_num
        self.skip_rows = skip_rows
        self.n_rows = n_rows
        self._row_num = 0
        self._closed = False

        # Normalize null_values to a set for O(1) lookup
        if null_values is None:
            self._null_values = set()
        elif isinstance(null_values, str):
            self._null_values = {null_values}
        elif isinstance(null_values, (list, tuple, set)):
            self._null_values = set(null_values)
        else:
            raise TypeError(f"null_values must be str, list, tuple, or set, got {type(null_values)}")

        self._raw_headers: Optional[List[str]] = headers
        self._headers: List[str] = []
        self._headers_initialized = False
        self._record_class = None
        self._data_iter: Optional[Iterator[List[Any]]] = None
        self._source: Optional[str] = None
        self._start_time: float = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self) -> Iterator[Record]:
        return self

    def __next__(self) -> Record:
        if self._closed:
            raise StopIteration
        if not self._headers_initialized:
            self._setup_record_class()
        if not self._start_time:
            self._start_time = time.monotonic()

        try:
            row_data = self._read_next_row()
        except StopIteration:
            took = time.monotonic() - self._start_time
            rate = self._row_num / took if took else 0
            logger.info(f"Read {self._row_num:,} rows from {self.source or self.__class__.__name__} "
                        f"in {took:.2f}s ({int(rate):,} rec/s)")
            raise

        self._row_num += 1
        return self._create_record(row_data)

    def __repr__(self):
        source = path.basename(self.source or '')
        if source:
            source = f"'{source}'"
        return f"{self.__class__.__name__}({source})"

    @property
    def source(self) -> str:
        """Name of the file being read. Workbook readers set it explicitly."""
        if self._source is None and hasattr(self, 'fp') and hasattr(self.fp, 'name'):
            self._source = str(self.fp.name)
        return self._source or ''

    @source.setter
    def source(self, value: str):
        self._source = value

    @property
    def row_count(self) -> int:
        """Number of data rows read so far."""
        return self._row_num

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def _read_headers(self) -> List[str]:
        """
        Read and return raw headers from the file.
        Must be implemented by subclasses.
        """
        pass

    @abstractmethod
    def _generate_rows(self) -> Iterator[List[Any]]:
        """Generate all raw data rows as lists, without applying skip or limit."""
        pass

    def _read_next_row(self) -> List[Any]:
        if self._data_iter is None:
            gen = self._generate_rows()
            start = self.skip_rows
            stop = start + self.n_rows if self.n_rows is not None else None
            self._data_iter = itertools.islice(gen, start, stop)

        return next(self._data_iter)

    def _cleanup(self):
        """
        Cleanup resources. Override in subclasses if needed.
        Default implementation does nothing.
        """
        pass

    def close(self) -> None:
        """Release the underlying file or workbook. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._cleanup()

    def _setup_record_class(self):
        if self._headers_initialized:
            return
        raw_headers = self._read_headers()
        # blank headers get a positional name so every field stays addressable
        self._headers = [
            str(h).strip() if h is not None and str(h).strip() else f'col_{i + 1}'
            for i, h in enumerate(raw_headers)
        ]
        if self.add_row_num:
            if '_row_num' in self._headers:
                raise ValueError("Header '_row_num' already exists. Remove it or set add_row_num=False.")
            self._headers.append('_row_num')
        self._record_class = record_class(self._headers, 'FileRecord')
        self._headers_initialized = True

    def _create_record(self, row_data: List[Any]) -> Record:
        row_data = list(row_data)
        if self._null_values:
            row_data = [None if val in self._null_values else val for val in row_data]

        # Pad short rows and truncate long ones to the header width
        expected = len(self._headers) - (1 if self.add_row_num else 0)
        if len(row_data) < expected:
            row_data.extend([None] * (expected - len(row_data)))
        elif len(row_data) > expected:
            logger.warning(f"Row {self.skip_rows + self._row_num} of {self.source or self.__class__.__name__} "
                           f"has {len(row_data)} fields, expected {expected}; extra fields dropped")
            row_data = row_data[:expected]

        if self.add_row_num:
            row_data.append(self.skip_rows + self._row_num)
        return self._record_class(*row_data)

    @property
    def headers(self) -> List[str]:
        """Column headers, read from the source on first access."""
        if not self._headers_initialized:
            self._setup_record_class()
        return self._headers.copy()

    @property
    def fieldnames(self) -> List[str]:
        """Alias for headers to maintain compatibility with csv.DictReader."""
        return self.headers
