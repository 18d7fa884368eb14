"""Unit tests for CSV export."""

import csv
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio

from happytrack.core.export_manager import REPORT_HEADERS, SUMMARY_HEADERS, ExportManager
from happytrack.core.models import ConsolidatedActivity, TestRailActivity
from happytrack.core.report_service import ReportService
from happytrack.utils.exceptions import FileSystemError


@pytest.fixture
def export_manager():
    return ExportManager()


@pytest_asyncio.fixture
async def report(alice, bob, date_range, mock_testrail_client, mock_jira_client):
    service = ReportService(mock_testrail_client, mock_jira_client)
    return await service.generate_report([alice, bob], *date_range)


def read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestRows:
    def test_empty_report_is_header_only(self, export_manager):
        assert export_manager.export_to_rows([]) == [REPORT_HEADERS]

    def test_detail_row(self, export_manager, alice):
        activity = TestRailActivity(
            id="test-1-2",
            user_id="7",
            user_name="Alice",
            timestamp=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
            project_name="Mobile",
            test_case_title="Login, with comma",
            test_run_name="Sprint 4",
            status="Passed",
        )

        rows = export_manager.export_to_rows(
            [ConsolidatedActivity.from_activity(activity, alice)]
        )

        assert rows[1] == [
            "Alice Tester",
            "alice@example.com",
            "2024-01-15",
            "TestRail",
            "Test Case: Passed",
            "Login, with comma",
            "Project: Mobile, Run: Sprint 4",
            "2024-01-15T10:30:00+00:00",
        ]

    @pytest.mark.asyncio
    async def test_summary_rows(self, export_manager, report):
        rows = export_manager.export_summary(report.summary)

        assert rows[0] == SUMMARY_HEADERS
        assert rows[1:] == [
            ["Alice Tester", "alice@example.com", "3", "0", "3", "2024-01-15 to 2024-01-21"],
            ["Bob Developer", "bob@example.com", "0", "2", "2", "2024-01-15 to 2024-01-21"],
        ]


class TestWriteCsv:
    @pytest.mark.asyncio
    async def test_export_round_trip(self, export_manager, report, tmp_path):
        path = export_manager.export_to_csv(report.consolidated, tmp_path / "out" / "r.csv")

        rows = read_csv(path)
        assert rows[0] == REPORT_HEADERS
        assert len(rows) == 6
        assert os.listdir(tmp_path / "out") == ["r.csv"]

    @pytest.mark.asyncio
    async def test_deterministic_bytes(self, export_manager, report, tmp_path):
        first = export_manager.export_to_csv(report.consolidated, tmp_path / "a.csv")
        second = export_manager.export_to_csv(report.consolidated, tmp_path / "b.csv")

        assert first.read_bytes() == second.read_bytes()

    def test_header_only_file(self, export_manager, tmp_path):
        path = export_manager.export_to_csv([], tmp_path / "empty.csv")

        assert read_csv(path) == [REPORT_HEADERS]

    def test_failed_write_leaves_no_files(self, export_manager, tmp_path):
        target = tmp_path / "report.csv"
        target.write_text("previous")

        with patch(
            "happytrack.core.export_manager.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(FileSystemError):
                export_manager.write_csv([["a"]], target)

        assert os.listdir(tmp_path) == ["report.csv"]
        assert target.read_text() == "previous"

    def test_default_filenames(self):
        start = datetime(2024, 1, 15, tzinfo=timezone.utc)
        end = datetime(2024, 1, 21, 23, 59, 59, tzinfo=timezone.utc)

        assert ExportManager.default_filenames(start, end) == (
            "activity-report-2024-01-15-to-2024-01-21.csv",
            "activity-summary-2024-01-15-to-2024-01-21.csv",
        )
