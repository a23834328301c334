"""
Report Emitter

Renders one node's row set to a temporary workbook, uploads it to the
node's user record, and removes the temporary file. Failures are logged
and returned as a failed result; they never stop the traversal.
"""
import logging
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from crm_reporter.core.error_taxonomy import ClassifiedError, ReportError, classify_error
from crm_reporter.data.records import ExpandedRow
from crm_reporter.tools.excel_output import ReportWorkbookBuilder

logger = logging.getLogger(__name__)

# Characters not allowed in file names on common file systems
INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_report_name(name: str) -> str:
    """Replace every character that is invalid in a file name with "_"."""
    return INVALID_FILENAME_CHARS.sub("_", name)


def report_file_name(report_name: str, timestamp: datetime) -> str:
    return f"{sanitize_report_name(report_name)}_{timestamp:%Y%m%d%H%M%S}.xlsx"


@dataclass
class EmitResult:
    """Outcome of emitting one report."""
    report_name: str
    user_id: str
    row_count: int
    file_name: Optional[str] = None
    error: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReportEmitter:
    """Turns row sets into uploaded workbooks."""

    def __init__(self, gateway, builder: Optional[ReportWorkbookBuilder] = None,
                 temp_dir: Optional[str] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.gateway = gateway
        self.builder = builder or ReportWorkbookBuilder()
        self.temp_dir = Path(temp_dir or tempfile.gettempdir())
        self._clock = clock

    def emit(self, rows: List[ExpandedRow], report_name: str, user_id: str) -> EmitResult:
        """
        Render and deliver one report.

        Args:
            rows: The node's full row set, in report order
            report_name: Display name, e.g. "Jane Doe's Team"
            user_id: User record the file is attached to

        Returns:
            EmitResult; `error` is set when rendering or upload failed
        """
        now = self._clock()
        file_name = report_file_name(report_name, now)
        file_path: Optional[Path] = None

        try:
            file_path = self.temp_dir / file_name
            self.builder.save(rows, file_path, now=now)
            self.gateway.upload_report(user_id, file_name, file_path.read_bytes())
            logger.info(f"Successfully uploaded report '{report_name}' ({len(rows)} rows) for user {user_id}")
            return EmitResult(report_name, user_id, len(rows), file_name=file_name)

        except Exception as e:
            error = ReportError(
                f"Error generating report '{report_name}': {e}",
                context={"user_id": user_id, "file_name": file_name},
            )
            logger.error(str(error))
            return EmitResult(report_name, user_id, len(rows), file_name=file_name,
                              error=classify_error(error))

        finally:
            self._cleanup(file_path)

    @staticmethod
    def _cleanup(file_path: Optional[Path]) -> None:
        if file_path is None or not file_path.exists():
            return
        try:
            file_path.unlink()
        except OSError as e:
            logger.debug(f"Could not remove temporary report {file_path}: {e}")
