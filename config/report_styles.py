"""
Report Workbook Styling

Centralized look of the generated opportunity-product workbooks so every
team report renders with the same header and column layout.
"""
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ColorPalette:
    """Workbook color configuration (hex, no leading '#')."""
    header_bg: str = "D3D3D3"          # Light gray
    header_text: str = "000000"
    border: str = "808080"


@dataclass
class Typography:
    """Font configuration."""
    family: str = "Calibri"
    header_size: int = 11
    body_size: int = 11
    header_bold: bool = True


@dataclass
class ReportStyle:
    """Complete workbook style."""
    colors: ColorPalette = field(default_factory=ColorPalette)
    typography: Typography = field(default_factory=Typography)

    # Auto-fit bounds, in Excel character units
    min_column_width: int = 8
    max_column_width: int = 60
    column_padding: int = 2

    freeze_header: bool = True
    date_format: str = "%Y-%m-%d"


# Global instance
_report_style: Optional[ReportStyle] = None

def get_report_style() -> ReportStyle:
    """Get the global report style."""
    global _report_style
    if _report_style is None:
        _report_style = ReportStyle()
    return _report_style
