"""Export manager for writing consolidated reports as CSV files."""

import csv
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from ..utils.date_utils import format_day
from ..utils.exceptions import FileSystemError
from ..utils.logging_config import get_logger
from .models import ConsolidatedActivity, ReportSummary

REPORT_HEADERS = [
    "User Name",
    "Email",
    "Date",
    "Source",
    "Activity Type",
    "Description",
    "Details",
    "Timestamp",
]

SUMMARY_HEADERS = [
    "User Name",
    "Email",
    "TestRail Activities",
    "Jira Activities",
    "Total Activities",
    "Date Range",
]

Row = List[str]


class ExportManager:
    """Handle report exports.

    Two tables are produced from a finished report:
    - the detail table, one row per consolidated activity
    - the summary table, one row per requested user
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    @staticmethod
    def export_to_rows(consolidated: Sequence[ConsolidatedActivity]) -> List[Row]:
        """Build the detail table, header first.

        Args:
            consolidated: Activities in report order

        Returns:
            Header row followed by one row per activity
        """
        rows = [list(REPORT_HEADERS)]
        for activity in consolidated:
            rows.append(
                [
                    activity.user.name,
                    activity.user.email,
                    activity.date,
                    activity.source.value,
                    activity.activity_type,
                    activity.description,
                    activity.details,
                    activity.timestamp.isoformat(),
                ]
            )
        return rows

    @staticmethod
    def export_summary(summary: ReportSummary) -> List[Row]:
        """Build the per-user summary table, header first."""
        date_range = str(summary.date_range)
        rows = [list(SUMMARY_HEADERS)]
        for user_summary in summary.user_summaries:
            rows.append(
                [
                    user_summary.user.name,
                    user_summary.user.email,
                    str(user_summary.testrail_count),
                    str(user_summary.jira_count),
                    str(user_summary.total_count),
                    date_range,
                ]
            )
        return rows

    def write_csv(self, rows: Sequence[Sequence[str]], filepath: Union[str, Path]) -> Path:
        """Write rows to ``filepath`` atomically.

        The table is written to a temporary file in the target directory and
        moved into place only once complete.

        Raises:
            FileSystemError: If the file cannot be written
        """
        filepath = Path(filepath)
        temp_path = None

        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                prefix=f".{filepath.stem}-", suffix=".tmp", dir=filepath.parent
            )

            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                csv.writer(f).writerows(rows)

            os.replace(temp_path, filepath)

        except (OSError, csv.Error) as e:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)
            self.logger.error(f"CSV export failed: {e}")
            raise FileSystemError(f"Failed to write {filepath.name}: {e}")

        self.logger.info(f"Exported {max(len(rows) - 1, 0)} rows to {filepath}")
        return filepath

    def export_to_csv(
        self, consolidated: Sequence[ConsolidatedActivity], filepath: Union[str, Path]
    ) -> Path:
        return self.write_csv(self.export_to_rows(consolidated), filepath)

    def export_summary_to_csv(
        self, summary: ReportSummary, filepath: Union[str, Path]
    ) -> Path:
        return self.write_csv(self.export_summary(summary), filepath)

    @staticmethod
    def default_filenames(start_date: datetime, end_date: datetime) -> Tuple[str, str]:
        """Detail and summary file names for a report period."""
        period = f"{format_day(start_date)}-to-{format_day(end_date)}"
        return f"activity-report-{period}.csv", f"activity-summary-{period}.csv"
