"""Command line entry point for Happy Track."""

import argparse
import asyncio
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core.config_manager import ConfigManager
from .core.models import User
from .core.orchestrator import ReportOrchestrator, WorkflowStatus
from .utils.date_utils import end_of_day, start_of_day
from .utils.exceptions import HappyTrackError, get_user_friendly_message
from .utils.logging_config import get_logger, setup_logging

APP_DIR = Path.home() / ".happytrack"


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="happytrack",
        description="Happy Track - TestRail and Jira activity reports",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Log file path (default: ~/.happytrack/logs/app.log)",
    )
    parser.add_argument(
        "--version", action="version", version=f"Happy Track {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    report = subparsers.add_parser("report", help="Generate an activity report")
    report.add_argument("--start", type=parse_date, required=True, help="YYYY-MM-DD")
    report.add_argument("--end", type=parse_date, required=True, help="YYYY-MM-DD")
    report.add_argument(
        "--user",
        dest="users",
        action="append",
        metavar="ID",
        help="Registry user id to include (repeatable; default: all users)",
    )
    report.add_argument("--output-dir", type=Path, help="Directory for CSV files")
    report.add_argument(
        "--email", action="store_true", help="Email the report to configured recipients"
    )

    subparsers.add_parser("test-connections", help="Test TestRail and Jira connections")

    users = subparsers.add_parser("users", help="Manage the user registry")
    users_sub = users.add_subparsers(dest="users_command")
    users_sub.add_parser("list", help="List configured users")

    add = users_sub.add_parser("add", help="Add a user")
    add.add_argument("--name", required=True)
    add.add_argument("--email", required=True)
    add.add_argument("--testrail-id")
    add.add_argument("--jira-account-id")

    remove = users_sub.add_parser("remove", help="Remove a user")
    remove.add_argument("user_id")

    return parser


def initialize_logging(args: argparse.Namespace) -> None:
    log_file = args.log_file or str(APP_DIR / "logs" / "app.log")

    setup_logging(
        level=args.log_level,
        log_file=log_file,
        enable_console=True,
        enable_structured=True,
        sanitize=True,
    )

    logger = get_logger(__name__)
    logger.info(f"Happy Track starting - Version {__version__}")
    logger.debug(f"Log file: {log_file}")


def print_progress(message: str, percentage: int) -> None:
    print(f"[{percentage:3d}%] {message}", file=sys.stderr)


async def run_report(config_manager: ConfigManager, args: argparse.Namespace) -> int:
    orchestrator = ReportOrchestrator(config_manager)
    orchestrator.set_progress_callback(print_progress)

    result = await orchestrator.execute_workflow(
        start_date=start_of_day(args.start),
        end_date=end_of_day(args.end),
        user_ids=args.users,
        output_dir=args.output_dir,
        send_email=args.email,
    )

    if result.status is not WorkflowStatus.COMPLETED:
        if result.error is not None:
            print(f"Error: {get_user_friendly_message(result.error)}")
        else:
            print(f"Error: {result.error_message}")
        return 1

    summary = result.report.summary
    print("\nReport Summary:")
    print("=" * 30)
    print(f"Date Range:           {summary.date_range}")
    print(f"Total Users:          {summary.total_users}")
    print(f"Total Activities:     {summary.total_activities}")
    print(f"TestRail Activities:  {summary.testrail_activities}")
    print(f"Jira Activities:      {summary.jira_activities}")
    print(f"\nReport:  {result.report_path}")
    print(f"Summary: {result.summary_path}")
    if result.message_id:
        print("Report emailed to configured recipients")

    return 0


async def run_connection_test(config_manager: ConfigManager) -> int:
    """Test all connections in CLI mode."""
    orchestrator = ReportOrchestrator(config_manager)
    results = await orchestrator.test_connections()

    if not results:
        print("No data sources configured. Configure TestRail or Jira first.")
        return 1

    print("\nConnection Test Results:")
    print("=" * 30)

    for service, status in results.items():
        status_text = "Connected" if status else "Failed"
        print(f"{service.title():<15}: {status_text}")

    if all(results.values()):
        print("\nAll connections successful!")
        return 0

    print("\nSome connections failed. Please check your configuration.")
    return 1


def run_users(config_manager: ConfigManager, args: argparse.Namespace) -> int:
    command = args.users_command or "list"

    if command == "add":
        user = config_manager.add_user(
            User(
                id="",
                name=args.name,
                email=args.email,
                testrail_id=args.testrail_id,
                jira_account_id=args.jira_account_id,
            )
        )
        print(f"Added user {user.name} ({user.id})")
        return 0

    if command == "remove":
        config_manager.remove_user(args.user_id)
        print(f"Removed user {args.user_id}")
        return 0

    users: List[User] = config_manager.get_users()
    if not users:
        print("No users configured.")
        return 0

    print(f"{'ID':<34} {'Name':<24} {'Email':<32} {'TestRail':<10} Jira")
    for user in users:
        print(
            f"{user.id:<34} {user.name:<24} {user.email:<32} "
            f"{user.testrail_id or '-':<10} {user.jira_account_id or '-'}"
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)
    initialize_logging(args)
    logger = get_logger(__name__)

    try:
        config_manager = ConfigManager()

        if args.command == "report":
            return asyncio.run(run_report(config_manager, args))

        if args.command == "test-connections":
            return asyncio.run(run_connection_test(config_manager))

        return run_users(config_manager, args)

    except HappyTrackError as e:
        logger.error(f"Application error: {e}")
        print(f"Error: {get_user_friendly_message(e)}")
        return 1

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
