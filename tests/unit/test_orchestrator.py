"""Unit tests for the report workflow orchestrator."""

from unittest.mock import AsyncMock, Mock

import pytest

from happytrack.core.orchestrator import (
    ReportOrchestrator,
    ReportWorkflowResult,
    WorkflowStatus,
)
from happytrack.core.config_manager import AppConfig, Configuration, JiraConfig
from happytrack.utils.exceptions import (
    ConfigurationError,
    FileSystemError,
    HappyTrackError,
    ValidationError,
)


@pytest.fixture
def mock_config_manager(alice, bob, tmp_path):
    """Create a mock config manager with two users and both sources."""
    config_manager = Mock()
    config_manager.validate_configuration.return_value = {}
    config_manager.is_testrail_configured.return_value = True
    config_manager.is_jira_configured.return_value = True
    config_manager.is_email_configured.return_value = True
    config_manager.get_users.return_value = [alice, bob]
    config_manager.get_app_config.return_value = AppConfig(output_dir=str(tmp_path))
    config_manager.get_config.return_value = Configuration()
    return config_manager


@pytest.fixture
def email_client():
    client = Mock()
    client.send_report_email.return_value = "<msg-1@example.com>"
    return client


@pytest.fixture
def mock_factory(mock_testrail_client, mock_jira_client, email_client):
    factory = Mock()
    factory.get_configured_clients.return_value = {
        "testrail": mock_testrail_client,
        "jira": mock_jira_client,
    }
    factory.create_email_client.return_value = email_client
    factory.close_all = AsyncMock()
    return factory


@pytest.fixture
def orchestrator(mock_config_manager, mock_factory):
    return ReportOrchestrator(mock_config_manager, service_factory=mock_factory)


class TestReportOrchestrator:
    """Test suite for ReportOrchestrator."""

    def test_initialization(self, orchestrator, mock_config_manager):
        assert orchestrator.config_manager == mock_config_manager
        assert orchestrator.is_cancelled is False
        assert orchestrator.current_stage == 0
        assert len(orchestrator.stages) == 6
        assert orchestrator.report_service is None

    def test_set_progress_callback(self, orchestrator):
        callback = Mock()
        orchestrator.set_progress_callback(callback)

        orchestrator._update_progress("Test message", 50)

        callback.assert_called_once_with("Test message", 50)

    def test_select_users(self, orchestrator, alice, bob):
        assert orchestrator.select_users() == [alice, bob]
        assert orchestrator.select_users(["u-bob"]) == [bob]

        with pytest.raises(ValidationError):
            orchestrator.select_users(["u-nobody"])

    def test_select_users_empty_registry(self, orchestrator, mock_config_manager):
        mock_config_manager.get_users.return_value = []

        with pytest.raises(ValidationError):
            orchestrator.select_users()

    @pytest.mark.asyncio
    async def test_execute_workflow_success(
        self, orchestrator, mock_factory, date_range, tmp_path
    ):
        progress = []
        orchestrator.set_progress_callback(lambda message, pct: progress.append(pct))

        result = await orchestrator.execute_workflow(*date_range)

        assert isinstance(result, ReportWorkflowResult)
        assert result.status == WorkflowStatus.COMPLETED
        assert result.activity_count == 5
        assert result.error_message is None
        assert result.message_id is None
        assert result.stages_completed == [
            "validate_configuration",
            "initialize_clients",
            "generate_report",
            "export_files",
            "finalize",
        ]
        assert result.report_path == tmp_path / "activity-report-2024-01-15-to-2024-01-21.csv"
        assert result.report_path.exists()
        assert result.summary_path.exists()
        assert progress[-1] == 100
        mock_factory.create_email_client.assert_not_called()
        mock_factory.close_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_execute_workflow_with_email(
        self, orchestrator, email_client, date_range, tmp_path
    ):
        result = await orchestrator.execute_workflow(
            *date_range, output_dir=tmp_path / "out", send_email=True
        )

        assert result.status == WorkflowStatus.COMPLETED
        assert result.message_id == "<msg-1@example.com>"
        assert "deliver_email" in result.stages_completed

        args = email_client.send_report_email.call_args[0]
        assert args[:2] == date_range
        assert args[2] == result.report_path
        assert args[3] == result.summary_path
        assert args[4] is result.report.summary

    @pytest.mark.asyncio
    async def test_selected_users_only(self, orchestrator, mock_testrail_client, date_range):
        result = await orchestrator.execute_workflow(*date_range, user_ids=["u-bob"])

        assert result.status == WorkflowStatus.COMPLETED
        assert [s.user.name for s in result.report.summary.user_summaries] == [
            "Bob Developer"
        ]
        mock_testrail_client.get_activity_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_configured_project_key_used_for_fetch(
        self, orchestrator, mock_config_manager, mock_jira_client, date_range
    ):
        mock_config_manager.get_config.return_value = Configuration(
            jira=JiraConfig(project_key="APP")
        )

        result = await orchestrator.execute_workflow(*date_range, user_ids=["u-bob"])

        assert result.status == WorkflowStatus.COMPLETED
        assert orchestrator.report_service.jira_project_key == "APP"
        assert orchestrator.report_service.testrail_project_id is None
        assert mock_jira_client.get_activity_report.call_args.kwargs["project_key"] == "APP"

    @pytest.mark.asyncio
    async def test_invalid_date_range(self, orchestrator, mock_factory, date_range):
        start, end = date_range

        result = await orchestrator.execute_workflow(end, start)

        assert result.status == WorkflowStatus.FAILED
        assert isinstance(result.error, ValidationError)
        assert result.stages_completed == []
        mock_factory.close_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_email_requested_but_not_configured(
        self, orchestrator, mock_config_manager, date_range
    ):
        mock_config_manager.is_email_configured.return_value = False

        result = await orchestrator.execute_workflow(*date_range, send_email=True)

        assert result.status == WorkflowStatus.FAILED
        assert isinstance(result.error, ConfigurationError)

    @pytest.mark.asyncio
    async def test_configuration_errors_reported(
        self, orchestrator, mock_config_manager, date_range
    ):
        mock_config_manager.validate_configuration.return_value = {
            "jira": ["API token is required"]
        }

        result = await orchestrator.execute_workflow(*date_range)

        assert result.status == WorkflowStatus.FAILED
        assert "jira: API token is required" in result.error_message
        assert result.error.details == {"jira": ["API token is required"]}

    @pytest.mark.asyncio
    async def test_export_failure_keeps_typed_error(self, orchestrator, date_range):
        orchestrator.export_manager = Mock()
        orchestrator.export_manager.default_filenames.return_value = ("r.csv", "s.csv")
        orchestrator.export_manager.export_to_csv.side_effect = FileSystemError("disk full")

        result = await orchestrator.execute_workflow(*date_range)

        assert result.status == WorkflowStatus.FAILED
        assert isinstance(result.error, FileSystemError)
        assert result.stages_completed == [
            "validate_configuration",
            "initialize_clients",
            "generate_report",
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, orchestrator, mock_factory, date_range):
        mock_factory.get_configured_clients.side_effect = RuntimeError("boom")

        result = await orchestrator.execute_workflow(*date_range)

        assert result.status == WorkflowStatus.FAILED
        assert type(result.error) is HappyTrackError
        assert result.error_message == "Stage initialize_clients failed: boom"

    @pytest.mark.asyncio
    async def test_execute_workflow_with_cancellation(
        self, orchestrator, mock_factory, date_range
    ):
        orchestrator.set_progress_callback(
            lambda message, pct: orchestrator.cancel()
            if message.startswith("Stage 2")
            else None
        )

        result = await orchestrator.execute_workflow(*date_range)

        assert result.status == WorkflowStatus.CANCELLED
        assert result.stages_completed == [
            "validate_configuration",
            "initialize_clients",
        ]
        assert result.report is None
        mock_factory.close_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_source_failure_does_not_fail_run(
        self, orchestrator, mock_jira_client, date_range
    ):
        mock_jira_client.get_activity_report.side_effect = ConnectionError("down")

        result = await orchestrator.execute_workflow(*date_range)

        assert result.status == WorkflowStatus.COMPLETED
        assert result.activity_count == 3

    @pytest.mark.asyncio
    async def test_test_connections(self, orchestrator, mock_factory):
        mock_factory.health_check_all = AsyncMock(
            return_value={
                "testrail": {"healthy": True},
                "jira": {"healthy": False, "error": "401"},
            }
        )

        assert await orchestrator.test_connections() == {
            "testrail": True,
            "jira": False,
        }
        mock_factory.close_all.assert_awaited_once()
