# tabtk/workbook.py
"""
Workbook host: creates, opens, saves and closes workbooks for sheet exports.

Workbooks are held in memory as openpyxl workbooks whatever their file
format. Legacy .xls files are read with xlrd and copied into an openpyxl
workbook. Delimited text files open as a single sheet.
"""

import csv
import logging
import re
from enum import IntEnum
from pathlib import Path
from typing import Any, List, Optional, Union
from zipfile import BadZipFile

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from .exceptions import ExportIOError, UnsupportedFormatError
from .readers.excel import convert_xls_cell
from .utils import to_string

logger = logging.getLogger(__name__)


class FileFormat(IntEnum):
    """
    Workbook file formats by numeric code.

    - TXT: tab delimited text
    - CSV: comma separated values
    - XLS: legacy Excel 97-2003 (read only)
    - XLSX: Excel workbook
    - PIPE: pipe delimited text
    """
    TXT = 0
    CSV = 1
    XLS = 2
    XLSX = 3
    PIPE = 4

    @classmethod
    def validate(cls, code: Union['FileFormat', int, str]) -> 'FileFormat':
        """
        Turn a format code or name into a FileFormat.

        Raises:
            UnsupportedFormatError: If ``code`` is not a known format.
        """
        if isinstance(code, str) and not code.isdigit():
            try:
                return cls[code.strip().lstrip('.').upper()]
            except KeyError:
                raise UnsupportedFormatError(code) from None
        try:
            return cls(int(code))
        except (ValueError, TypeError):
            raise UnsupportedFormatError(code) from None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'FileFormat':
        """Format implied by a file's extension."""
        suffix = Path(path).suffix.lower()
        try:
            return _SUFFIX_FORMATS[suffix]
        except KeyError:
            raise UnsupportedFormatError(suffix or str(path), 'unrecognized file extension') from None

    @property
    def delimiter(self) -> Optional[str]:
        """Field separator for the text formats, None for workbooks."""
        return _DELIMITERS.get(self)

    @property
    def is_text(self) -> bool:
        return self in _DELIMITERS


_SUFFIX_FORMATS = {
    '.txt': FileFormat.TXT,
    '.tsv': FileFormat.TXT,
    '.tab': FileFormat.TXT,
    '.csv': FileFormat.CSV,
    '.xls': FileFormat.XLS,
    '.xlsx': FileFormat.XLSX,
    '.xlsm': FileFormat.XLSX,
    '.pipe': FileFormat.PIPE,
    '.psv': FileFormat.PIPE,
}
_DELIMITERS = {FileFormat.TXT: '\t', FileFormat.CSV: ',', FileFormat.PIPE: '|'}


class WorkbookDocument:
    """
    An open workbook owned by an ExcelHost.

    Attributes
    ----------
    path : Path or None
        Where the workbook is saved. None until the first save_as().
    file_format : FileFormat
        Format used by save()
    workbook : openpyxl.Workbook
        The in-memory workbook
    """

    def __init__(self, path: Optional[Path], file_format: FileFormat, workbook, host: 'ExcelHost'):
        self.path = path
        self.file_format = file_format
        self.workbook = workbook
        self.host = host
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        state = 'closed' if self._closed else 'open'
        return f"WorkbookDocument('{self.path}', {self.file_format.name}, {state})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sheetnames(self) -> List[str]:
        return list(self.workbook.sheetnames)

    def save(self) -> None:
        self.host.save(self)

    def save_as(self, path: Union[str, Path], file_format: Optional[Union[FileFormat, int, str]] = None) -> None:
        self.host.save_as(self, path, file_format)

    def close(self) -> None:
        self.host.close(self)


def _sheet_title(name: str) -> str:
    title = re.sub(r'[\\*?:/\[\]]', '_', name)[:31]
    return title or 'Sheet1'


class ExcelHost:
    """
    Owns every workbook opened for sheet export and releases them on quit.

    Example
    -------
    ::

        with ExcelHost() as host:
            doc = host.new_workbook('ba_sing_se.xlsx')
            ...
            doc.save()
        # every document is closed here
    """

    def __init__(self):
        self.documents: List[WorkbookDocument] = []
        self._quit = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.quit()

    def __repr__(self):
        return f"ExcelHost(documents={len(self.documents)})"

    def _check_running(self):
        if self._quit:
            raise RuntimeError("ExcelHost has been shut down")

    def new_workbook(self, path: Optional[Union[str, Path]] = None,
                     file_format: Union[FileFormat, int, str] = FileFormat.XLSX) -> WorkbookDocument:
        """
        Create an empty workbook. When ``path`` is given it is saved there immediately.

        Raises:
            UnsupportedFormatError: If the format code is unknown, or is XLS and a path is given.
        """
        self._check_running()
        file_format = FileFormat.validate(file_format)
        document = WorkbookDocument(Path(path) if path else None, file_format, openpyxl.Workbook(), self)
        self.documents.append(document)
        if path:
            try:
                self.save(document)
            except Exception:
                self.close(document)
                raise
        logger.info(f"Created workbook {document.path or '(unsaved)'}")
        return document

    def open_workbook(self, path: Union[str, Path]) -> WorkbookDocument:
        """
        Open an existing workbook or delimited text file.

        Raises:
            UnsupportedFormatError: If the extension is not recognized.
            ExportIOError: If the file cannot be read.
        """
        self._check_running()
        path = Path(path)
        file_format = FileFormat.from_path(path)
        try:
            if file_format == FileFormat.XLSX:
                workbook = openpyxl.load_workbook(path, keep_vba=path.suffix.lower() == '.xlsm')
            elif file_format == FileFormat.XLS:
                workbook = self._import_xls(path)
            else:
                workbook = self._import_text(path, file_format)
        except (InvalidFileException, BadZipFile, OSError, xlrd.XLRDError, csv.Error, KeyError) as e:
            logger.error(f"Cannot open workbook {path}: {e}")
            raise ExportIOError(path, e) from e
        document = WorkbookDocument(path, file_format, workbook, self)
        self.documents.append(document)
        logger.info(f"Opened workbook {path}")
        return document

    @staticmethod
    def _import_xls(path: Path):
        book = xlrd.open_workbook(str(path))
        try:
            workbook = openpyxl.Workbook()
            workbook.remove(workbook.active)
            for sheet in book.sheets():
                worksheet = workbook.create_sheet(sheet.name)
                for row_num in range(sheet.nrows):
                    worksheet.append([convert_xls_cell(cell, book.datemode) for cell in sheet.row(row_num)])
            if not workbook.worksheets:
                workbook.create_sheet('Sheet1')
            return workbook
        finally:
            book.release_resources()

    @staticmethod
    def _import_text(path: Path, file_format: FileFormat):
        workbook = openpyxl.Workbook()
        worksheet = workbook.active
        worksheet.title = _sheet_title(path.stem)
        quoting = csv.QUOTE_MINIMAL if file_format == FileFormat.CSV else csv.QUOTE_NONE
        with open(path, encoding='utf-8-sig', newline='') as fp:
            for row in csv.reader(fp, delimiter=file_format.delimiter, quoting=quoting):
                worksheet.append(row)
        return workbook

    def save(self, document: WorkbookDocument) -> None:
        """Save ``document`` to its own path and format."""
        if document.path is None:
            raise ValueError("Workbook has never been saved. Use save_as() with a path.")
        self.save_as(document, document.path, document.file_format)

    def save_as(self, document: WorkbookDocument, path: Union[str, Path],
                file_format: Optional[Union[FileFormat, int, str]] = None) -> None:
        """
        Save ``document`` to ``path``. The format defaults to the one implied by
        the extension. Text formats write the active sheet only.

        Raises:
            UnsupportedFormatError: For XLS, which cannot be written.
            ExportIOError: If the file cannot be written.
        """
        self._check_running()
        if document.closed:
            raise ValueError(f"{document!r} is closed")
        path = Path(path)
        file_format = FileFormat.validate(file_format) if file_format is not None else FileFormat.from_path(path)
        if file_format == FileFormat.XLS:
            raise UnsupportedFormatError(file_format, 'writing .xls workbooks is not supported, save as XLSX')
        try:
            if file_format == FileFormat.XLSX:
                document.workbook.save(path)
            else:
                self._export_text(document.workbook.active, path, file_format)
        except OSError as e:
            logger.error(f"Cannot save workbook to {path}: {e}")
            raise ExportIOError(path, e) from e
        document.path = path
        document.file_format = file_format
        logger.info(f"Saved workbook {path} as {file_format.name}")

    @staticmethod
    def _export_text(worksheet, path: Path, file_format: FileFormat) -> None:
        def text(value: Any) -> str:
            return '' if value is None else to_string(value)

        with open(path, 'w', encoding='utf-8', newline='') as fp:
            writer = csv.writer(fp, delimiter=file_format.delimiter, quoting=csv.QUOTE_MINIMAL,
                                lineterminator='\n')
            for row in worksheet.iter_rows(values_only=True):
                writer.writerow([text(v) for v in row])

    def close(self, document: WorkbookDocument) -> None:
        """Close ``document`` without saving. Safe to call twice."""
        if document.closed:
            return
        document._closed = True
        if document in self.documents:
            self.documents.remove(document)
        try:
            document.workbook.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing {document.path}: {e}")
        logger.debug(f"Closed workbook {document.path}")

    def quit(self) -> None:
        """Close every open document. Safe to call more than once."""
        if self._quit:
            return
        for document in list(self.documents):
            self.close(document)
        self._quit = True
        logger.debug("Workbook host shut down")

    @property
    def running(self) -> bool:
        return not self._quit
