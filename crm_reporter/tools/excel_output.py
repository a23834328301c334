"""
Opportunity Product Workbook Generator

Renders expanded report rows into a single-sheet Excel workbook with the
fixed team-report column layout.
"""
import logging
from pathlib import Path
from typing import List, Any, Optional, Iterable, Union
from dataclasses import dataclass
from datetime import datetime, timezone

import openpyxl
from openpyxl.styles import Font, PatternFill, Border, Side, Alignment
from openpyxl.utils import get_column_letter

from config.report_styles import ReportStyle, get_report_style
from crm_reporter.data.records import ExpandedRow

logger = logging.getLogger(__name__)

REPORT_HEADERS = [
    "S.No.", "Pre Lead", "Lead", "Lob", "Opportunity", "Project",
    "Created By", "Created On", "Product", "Potential", "Contractor",
    "PO Number", "SO Number", "Lead Geography", "OP Aging", "Status",
]


@dataclass
class ExcelOutput:
    """Container for Excel output."""
    file_path: str
    row_count: int


def age_in_days(created_on: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days between creation and now; None when the record has no date."""
    if created_on is None:
        return None
    if created_on.tzinfo is None:
        created_on = created_on.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - created_on).days


class ReportWorkbookBuilder:
    """
    Generate opportunity product workbooks.
    """

    def __init__(self, style: Optional[ReportStyle] = None, worksheet_name: str = "Opportunity Products"):
        self.style = style or get_report_style()
        self.worksheet_name = worksheet_name

        # Define reusable styles
        self._setup_styles()

    def _setup_styles(self):
        """Create styles for consistent formatting."""
        self.header_fill = PatternFill(
            start_color=self.style.colors.header_bg,
            end_color=self.style.colors.header_bg,
            fill_type="solid"
        )
        self.header_font = Font(
            name=self.style.typography.family,
            size=self.style.typography.header_size,
            bold=self.style.typography.header_bold,
            color=self.style.colors.header_text,
        )
        self.data_font = Font(
            name=self.style.typography.family,
            size=self.style.typography.body_size
        )
        self.header_border = Border(bottom=Side(style='thin', color=self.style.colors.border))

    def row_values(self, row: ExpandedRow, serial: int, now: datetime) -> List[Any]:
        """Cell values of one report line, in REPORT_HEADERS order."""
        created = row.created_on.strftime(self.style.date_format) if row.created_on else ""
        aging = age_in_days(row.created_on, now)
        return [
            serial,
            row.pre_lead,
            row.lead,
            row.lob,
            row.opportunity,
            row.project,
            row.created_by_name,
            created,
            row.product,
            row.potential,
            row.contractor,
            row.po_number,
            row.so_number,
            row.geography,
            aging if aging is not None else "",
            row.status,
        ]

    def build(self, rows: Iterable[ExpandedRow], now: Optional[datetime] = None) -> openpyxl.Workbook:
        """
        Build the workbook in memory.

        Args:
            rows: Report rows, written in the given order
            now: Reference time for the aging column (default: current UTC time)

        Returns:
            Workbook with one header row and one line per row
        """
        now = now or datetime.now(timezone.utc)
        rows = list(rows)

        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = self.worksheet_name

        # Header row
        for col_idx, header in enumerate(REPORT_HEADERS, 1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = self.header_font
            cell.fill = self.header_fill
            cell.border = self.header_border
            cell.alignment = Alignment(horizontal='center')

        # Data rows
        for offset, report_row in enumerate(rows):
            values = self.row_values(report_row, offset + 1, now)
            for col_idx, value in enumerate(values, 1):
                cell = ws.cell(row=offset + 2, column=col_idx, value=value)
                cell.font = self.data_font

        if self.style.freeze_header:
            ws.freeze_panes = "A2"

        self._autofit(ws)
        return wb

    def save(self, rows: Iterable[ExpandedRow], file_path: Union[str, Path],
             now: Optional[datetime] = None) -> ExcelOutput:
        """Build the workbook and write it to `file_path`."""
        rows = list(rows)
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        wb = self.build(rows, now=now)
        wb.save(file_path)
        logger.debug(f"Wrote {len(rows)} row(s) to {file_path}")

        return ExcelOutput(file_path=str(file_path), row_count=len(rows))

    def _autofit(self, ws):
        """Size each column to its longest value within the style's bounds."""
        for col_idx, column in enumerate(ws.iter_cols(min_row=1, max_row=ws.max_row), 1):
            max_length = max((len(str(c.value)) for c in column if c.value is not None), default=0)
            width = max(self.style.min_column_width, max_length + self.style.column_padding)
            ws.column_dimensions[get_column_letter(col_idx)].width = min(width, self.style.max_column_width)
