"""Workflow orchestrator for report generation and delivery."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..utils.date_utils import ensure_aware
from ..utils.exceptions import ConfigurationError, HappyTrackError, ValidationError
from ..utils.logging_config import get_logger, get_security_logger
from ..utils.validators import InputValidator
from .config_manager import ConfigManager
from .export_manager import ExportManager
from .models import ReportResult, User
from .report_service import ReportService
from .service_factory import ServiceFactory


class WorkflowStatus(Enum):
    """Workflow execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ReportWorkflowResult:
    """Result of workflow execution."""

    status: WorkflowStatus
    report: Optional[ReportResult] = None
    report_path: Optional[Path] = None
    summary_path: Optional[Path] = None
    message_id: Optional[str] = None
    activity_count: int = 0
    execution_time: float = 0.0
    error_message: Optional[str] = None
    error: Optional[BaseException] = None
    stages_completed: List[str] = field(default_factory=list)


class ReportOrchestrator:
    """Orchestrates a complete report run.

    Stages run in order: validate configuration, initialize clients,
    generate the report, export CSV files, optionally email them, finalize.
    Cancellation is checked between stages; clients are always closed when
    the run ends.

    Example:
        ```python
        orchestrator = ReportOrchestrator(config_manager)
        orchestrator.set_progress_callback(print_progress)

        result = await orchestrator.execute_workflow(
            start_date=start,
            end_date=end,
            output_dir=Path("reports"),
            send_email=True,
        )
        ```
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        service_factory: Optional[ServiceFactory] = None,
        export_manager: Optional[ExportManager] = None,
    ) -> None:
        self.config_manager = config_manager
        self.logger = get_logger(__name__)
        self.security_logger = get_security_logger()

        self.service_factory = service_factory or ServiceFactory(config_manager)
        self.export_manager = export_manager or ExportManager()
        self.report_service: Optional[ReportService] = None

        self.is_cancelled: bool = False
        self.progress_callback: Optional[Callable[[str, int], None]] = None

        self.stages = [
            "validate_configuration",
            "initialize_clients",
            "generate_report",
            "export_files",
            "deliver_email",
            "finalize",
        ]
        self.current_stage = 0

    def set_progress_callback(self, callback: Callable[[str, int], None]) -> None:
        """Set callback for progress updates.

        Args:
            callback: Function that accepts message (str) and percentage (int)
        """
        self.progress_callback = callback

    def _update_progress(self, message: str, percentage: Optional[int] = None) -> None:
        if self.progress_callback:
            if percentage is None:
                percentage = int((self.current_stage / len(self.stages)) * 100)
            self.progress_callback(message, percentage)

    def cancel(self) -> None:
        """Cancel the workflow execution."""
        self.is_cancelled = True
        self.logger.info("Workflow cancellation requested")

    def select_users(self, user_ids: Optional[List[str]] = None) -> List[User]:
        """Registry users to report on, in registry order.

        Raises:
            ValidationError: If an id is unknown or no users are configured.
        """
        users = self.config_manager.get_users()

        if user_ids:
            known = {user.id for user in users}
            unknown = [user_id for user_id in user_ids if user_id not in known]
            if unknown:
                raise ValidationError(f"Unknown user: {', '.join(unknown)}")
            users = [user for user in users if user.id in set(user_ids)]

        if not users:
            raise ValidationError("No users configured. Add at least one user.")

        return users

    async def execute_workflow(
        self,
        start_date: datetime,
        end_date: datetime,
        user_ids: Optional[List[str]] = None,
        output_dir: Optional[Path] = None,
        send_email: bool = False,
    ) -> ReportWorkflowResult:
        """Execute the complete workflow.

        Args:
            start_date: Start of the reporting window
            end_date: End of the reporting window (inclusive)
            user_ids: Registry ids to report on; all users when omitted
            output_dir: Directory for the CSV files; defaults to the configured one
            send_email: Whether to email the finished files

        Returns:
            ReportWorkflowResult with status, report and file paths. Failures
            are reported through the result rather than raised.
        """
        started = datetime.now()
        result = ReportWorkflowResult(status=WorkflowStatus.RUNNING)
        self.is_cancelled = False

        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)

        try:
            self.logger.info("Starting report workflow")
            self.security_logger.log_security_event(
                "workflow_started",
                date_range=f"{start_date.date()} to {end_date.date()}",
                send_email=send_email,
            )

            users = await self._execute_stage(
                "validate_configuration",
                result,
                start_date,
                end_date,
                user_ids,
                send_email,
            )
            if self.is_cancelled:
                return self._handle_cancellation(result)

            await self._execute_stage("initialize_clients", result)
            if self.is_cancelled:
                return self._handle_cancellation(result)

            report = await self._execute_stage(
                "generate_report", result, users, start_date, end_date
            )
            result.report = report
            result.activity_count = len(report.consolidated)
            if self.is_cancelled:
                return self._handle_cancellation(result)

            result.report_path, result.summary_path = await self._execute_stage(
                "export_files",
                result,
                report,
                start_date,
                end_date,
                output_dir,
            )
            if self.is_cancelled:
                return self._handle_cancellation(result)

            if send_email:
                result.message_id = await self._execute_stage(
                    "deliver_email", result, report, start_date, end_date, result
                )
                if self.is_cancelled:
                    return self._handle_cancellation(result)

            await self._execute_stage("finalize", result)

            result.status = WorkflowStatus.COMPLETED
            result.execution_time = (datetime.now() - started).total_seconds()

            self.logger.info(
                f"Workflow completed successfully in {result.execution_time:.2f}s"
            )
            self.security_logger.log_security_event(
                "workflow_completed",
                execution_time=result.execution_time,
                activity_count=result.activity_count,
            )

            return result

        except Exception as e:
            result.status = WorkflowStatus.FAILED
            result.error = e
            result.error_message = str(e)
            result.execution_time = (datetime.now() - started).total_seconds()

            self.logger.error(f"Workflow failed: {e}")
            self.security_logger.log_security_event(
                "workflow_failed",
                error_type=type(e).__name__,
                error_message=str(e),
                execution_time=result.execution_time,
            )

            return result

        finally:
            await self._cleanup_clients()

    async def _execute_stage(
        self, stage_name: str, result: ReportWorkflowResult, *args, **kwargs
    ):
        """Run one stage, recording it in ``result`` on success.

        Typed errors propagate unchanged so callers can map them to a
        user-facing message; anything else is wrapped in HappyTrackError.
        """
        self.current_stage = self.stages.index(stage_name)
        stage_number = self.current_stage + 1

        self.logger.info(f"Executing stage {stage_number}: {stage_name}")
        self._update_progress(
            f"Stage {stage_number}: {stage_name.replace('_', ' ').title()}"
        )

        try:
            method = getattr(self, f"_stage_{stage_name}")
            stage_result = await method(*args, **kwargs)

            result.stages_completed.append(stage_name)
            self.logger.info(f"Stage {stage_number} completed: {stage_name}")

            return stage_result

        except HappyTrackError as e:
            self.logger.error(f"Stage {stage_number} failed: {stage_name} - {e}")
            raise
        except Exception as e:
            self.logger.error(f"Stage {stage_number} failed: {stage_name} - {e}")
            raise HappyTrackError(f"Stage {stage_name} failed: {e}")

    async def _stage_validate_configuration(
        self,
        start_date: datetime,
        end_date: datetime,
        user_ids: Optional[List[str]],
        send_email: bool,
    ) -> List[User]:
        """Stage 1: Validate configuration and report parameters."""
        InputValidator.validate_date_range(start_date, end_date)

        errors = self.config_manager.validate_configuration()
        if errors:
            details = "; ".join(
                f"{section}: {', '.join(messages)}" for section, messages in errors.items()
            )
            raise ConfigurationError(
                f"Configuration validation failed: {details}", details=errors
            )

        if not (
            self.config_manager.is_testrail_configured()
            or self.config_manager.is_jira_configured()
        ):
            raise ConfigurationError("Neither TestRail nor Jira is configured")

        if send_email and not self.config_manager.is_email_configured():
            raise ConfigurationError("Email delivery requested but email is not configured")

        return self.select_users(user_ids)

    async def _stage_initialize_clients(self) -> None:
        """Stage 2: Initialize API clients using factory."""
        clients = self.service_factory.get_configured_clients()
        config = self.config_manager.get_config()
        self.report_service = ReportService(
            testrail_client=clients["testrail"],
            jira_client=clients["jira"],
            testrail_project_id=config.testrail.project_id,
            jira_project_key=config.jira.project_key,
        )

        configured = [name for name, client in clients.items() if client]
        self.logger.info(f"API clients initialized: {', '.join(configured)}")

    async def _stage_generate_report(
        self, users: List[User], start_date: datetime, end_date: datetime
    ) -> ReportResult:
        """Stage 3: Fetch and consolidate activity."""
        report = await self.report_service.generate_report(users, start_date, end_date)

        if not report.consolidated:
            self.logger.warning("No activity found for the specified criteria")

        return report

    async def _stage_export_files(
        self,
        report: ReportResult,
        start_date: datetime,
        end_date: datetime,
        output_dir: Optional[Path],
    ) -> Tuple[Path, Path]:
        """Stage 4: Write detail and summary CSV files."""
        directory = Path(output_dir or self.config_manager.get_app_config().output_dir)
        report_name, summary_name = self.export_manager.default_filenames(
            start_date, end_date
        )

        report_path = self.export_manager.export_to_csv(
            report.consolidated, directory / report_name
        )
        summary_path = self.export_manager.export_summary_to_csv(
            report.summary, directory / summary_name
        )
        return report_path, summary_path

    async def _stage_deliver_email(
        self,
        report: ReportResult,
        start_date: datetime,
        end_date: datetime,
        result: ReportWorkflowResult,
    ) -> str:
        """Stage 5: Email the exported files."""
        email_client = self.service_factory.create_email_client()

        # smtplib blocks; keep it off the event loop
        return await asyncio.to_thread(
            email_client.send_report_email,
            start_date,
            end_date,
            result.report_path,
            result.summary_path,
            report.summary,
        )

    async def _stage_finalize(self) -> None:
        """Stage 6: Finalize workflow."""
        self._update_progress("Finalizing...", 100)
        self.logger.info("Workflow finalization completed")

    def _handle_cancellation(self, result: ReportWorkflowResult) -> ReportWorkflowResult:
        result.status = WorkflowStatus.CANCELLED
        result.error_message = "Workflow was cancelled by user"

        self.logger.info("Workflow cancelled by user")
        self.security_logger.log_security_event(
            "workflow_cancelled",
            stage=self.current_stage,
            stages_completed=len(result.stages_completed),
        )

        return result

    async def _cleanup_clients(self) -> None:
        try:
            await self.service_factory.close_all()
            self.logger.info("API clients cleaned up")

        except Exception as e:
            self.logger.error(f"Error during client cleanup: {e}")

    async def test_connections(self) -> Dict[str, bool]:
        """Test every configured source connection."""
        self.logger.info("Testing API connections")

        try:
            health_results = await self.service_factory.health_check_all()
            results = {
                service: bool(health.get("healthy"))
                for service, health in health_results.items()
            }

            self.logger.info(f"Connection test results: {results}")
            return results

        finally:
            await self._cleanup_clients()
