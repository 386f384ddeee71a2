# tabtk/writers/excel.py
"""
Worksheet management for sheet exports using openpyxl.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence, Tuple

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from ..defaults import settings
from ..utils import to_string

logger = logging.getLogger(__name__)

MIDNIGHT = time(0, 0)
INVALID_TITLE_CHARS = re.compile(r'[\\*?:/\[\]]')


@dataclass
class SheetRef:
    """A worksheet located or created in a workbook."""
    workbook: Any
    name: str
    worksheet: Worksheet
    created: bool


class SheetManager:
    """
    Finds, clears, formats and fills worksheets.

    Sheet names are unique within a workbook and matched exactly, case
    included. Exporting to a name that already
    exists reuses and clears that sheet, so repeated exports replace their data
    instead of piling up copies.

    Parameters
    ----------
    default_sheet_pattern : str, optional
        Regex for placeholder sheet names a new workbook comes with. Defaults to
        ``settings['default_sheet_pattern']`` (Sheet, Sheet1, Sheet2, ...)
    header_fill_color : str, optional
        RGB hex fill for the header row
    header_font_color : str, optional
        RGB hex font color for the header row
    max_column_width : int, optional
        Upper bound for auto-sized column widths

    Example
    -------
    ::

        manager = SheetManager()
        ref = manager.find_or_create(workbook, 'Benders')
        manager.write_header(ref.worksheet, ['id', 'name'])
        manager.paste(ref.worksheet, (2, 1), [(1, 'Aang'), (2, 'Katara')])
        manager.remove_default_sheets(workbook, keep=['Benders'])
        manager.autosize_columns(ref.worksheet)
    """

    def __init__(self,
                 default_sheet_pattern: Optional[str] = None,
                 header_fill_color: Optional[str] = None,
                 header_font_color: Optional[str] = None,
                 max_column_width: Optional[int] = None):
        self.default_sheet_pattern = re.compile(
            default_sheet_pattern or settings.get('default_sheet_pattern', r'^Sheet\d*$'))
        self.header_fill_color = header_fill_color or settings.get('header_fill_color', '1F4E78')
        self.header_font_color = header_font_color or settings.get('header_font_color', 'FFFFFF')
        self.max_column_width = max_column_width or settings.get('max_column_width', 60)

    @staticmethod
    def validate_name(name: str) -> str:
        """Check ``name`` is a legal worksheet title. Raises ValueError if not."""
        if not name or not name.strip():
            raise ValueError("Sheet name cannot be empty")
        if len(name) > 31:
            raise ValueError(f"Sheet name '{name}' is longer than 31 characters")
        if INVALID_TITLE_CHARS.search(name):
            raise ValueError(f"Sheet name '{name}' contains one of \\ / * ? : [ ]")
        return name

    def find_or_create(self, workbook, name: str) -> SheetRef:
        """Return the sheet called ``name``, clearing it, or add a new one."""
        self.validate_name(name)
        if name in workbook.sheetnames:
            worksheet = workbook[name]
            self.clear(worksheet)
            logger.debug(f"Reusing sheet '{name}'")
            return SheetRef(workbook, name, worksheet, False)

        # titles must also be unique ignoring case, openpyxl would rename the new sheet
        for title in workbook.sheetnames:
            if title.lower() == name.lower():
                raise ValueError(f"Sheet name '{name}' conflicts with existing sheet '{title}'")

        worksheet = workbook.create_sheet(name)
        logger.debug(f"Created sheet '{worksheet.title}'")
        return SheetRef(workbook, worksheet.title, worksheet, True)

    def clear(self, sheet: Worksheet) -> None:
        """Remove every row and column width from ``sheet``."""
        if sheet.max_row:
            sheet.delete_rows(1, sheet.max_row)
        for key in list(sheet.column_dimensions.keys()):
            del sheet.column_dimensions[key]
        sheet.freeze_panes = None

    @staticmethod
    def is_empty(sheet: Worksheet) -> bool:
        return all(cell.value is None for row in sheet.iter_rows() for cell in row)

    def remove_default_sheets(self, workbook, keep: Sequence[str] = ()) -> int:
        """
        Delete empty placeholder sheets (Sheet, Sheet1, ...).

        Sheets named in ``keep`` and sheets holding data are never removed, and
        the last remaining sheet always stays.

        Returns:
            Number of sheets removed
        """
        removed = 0
        for worksheet in list(workbook.worksheets):
            if len(workbook.worksheets) <= 1:
                break
            if worksheet.title in keep or not self.default_sheet_pattern.match(worksheet.title):
                continue
            if self.is_empty(worksheet):
                workbook.remove(worksheet)
                removed += 1
                logger.debug(f"Removed default sheet '{worksheet.title}'")
        return removed

    def write_header(self, sheet: Worksheet, columns: Sequence[str]) -> None:
        """Write ``columns`` into row 1 in bold on a shaded background and freeze it."""
        font = Font(bold=True, color=self.header_font_color)
        fill = PatternFill(fill_type='solid', start_color=self.header_fill_color, end_color=self.header_fill_color)
        for col_idx, column_name in enumerate(columns, 1):
            cell = sheet.cell(row=1, column=col_idx, value=str(column_name))
            cell.font = font
            cell.fill = fill
        sheet.freeze_panes = 'A2'

    @staticmethod
    def _cell_value(value: Any) -> Any:
        if value is None or isinstance(value, (bool, int, float, Decimal)):
            return value
        if isinstance(value, str):
            return ILLEGAL_CHARACTERS_RE.sub('', value)
        if isinstance(value, (datetime, time)):
            # Excel has no time zones
            return to_string(value) if value.tzinfo else value
        if isinstance(value, date):
            return value
        return ILLEGAL_CHARACTERS_RE.sub('', to_string(value))

    def paste(self, sheet: Worksheet, origin: Tuple[int, int], rows: Iterable[Sequence[Any]]) -> int:
        """
        Write ``rows`` as one block whose top left cell is ``origin`` (row, column), 1-based.

        Returns:
            Number of rows written
        """
        origin_row, origin_col = origin
        count = 0
        for row_idx, record in enumerate(rows, origin_row):
            for col_idx, value in enumerate(record, origin_col):
                cell = sheet.cell(row=row_idx, column=col_idx, value=self._cell_value(value))
                if isinstance(cell.value, datetime) and cell.value.time() != MIDNIGHT:
                    cell.number_format = 'YYYY-MM-DD HH:MM:SS'
                elif isinstance(cell.value, (date, datetime)):
                    cell.number_format = 'YYYY-MM-DD'
            count += 1
        return count

    def autosize_columns(self, sheet: Worksheet) -> None:
        """Fit each column's width to its longest value, within 6 and ``max_column_width``."""
        widths = {}
        for row in sheet.iter_rows():
            for cell in row:
                if cell.value is None:
                    continue
                if isinstance(cell.value, datetime):
                    length = 19 if cell.value.time() != MIDNIGHT else 10
                else:
                    length = len(to_string(cell.value))
                widths[cell.column] = max(widths.get(cell.column, 0), length)

        for col_idx, width in widths.items():
            adjusted_width = min(max(width + 2, 6), self.max_column_width)
            sheet.column_dimensions[get_column_letter(col_idx)].width = adjusted_width

    def save(self, document) -> None:
        """Save the workbook document the sheet belongs to."""
        document.save()
