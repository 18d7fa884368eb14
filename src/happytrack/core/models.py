"""Activity data model shared by the source adapters and the report pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..utils.date_utils import format_day, to_utc


class ActivitySource(Enum):
    """Source system an activity was read from."""

    TESTRAIL = "TestRail"
    JIRA = "Jira"


class ActivityKind(Enum):
    """Kinds of user activity the adapters emit."""

    TEST_EXECUTION = "test_execution"
    TEST_CASE_UPDATE = "test_case_update"
    TEST_RUN_CREATION = "test_run_creation"
    ISSUE_CREATED = "issue_created"
    COMMENT_ADDED = "comment_added"


@dataclass
class User:
    """An application user mapped to accounts in both source systems."""

    id: str
    name: str
    email: str
    testrail_id: Optional[str] = None
    jira_account_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "testrailId": self.testrail_id,
            "jiraAccountId": self.jira_account_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        """Build a user from a settings blob (camelCase or snake_case keys)."""
        testrail_id = data.get("testrailId", data.get("testrail_id"))
        jira_account_id = data.get("jiraAccountId", data.get("jira_account_id"))
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            testrail_id=str(testrail_id) if testrail_id not in (None, "") else None,
            jira_account_id=jira_account_id or None,
        )


@dataclass
class TestRailActivity:
    """A normalized TestRail event."""

    id: str
    user_id: str
    user_name: str
    timestamp: datetime
    kind: ActivityKind = ActivityKind.TEST_EXECUTION
    project_name: Optional[str] = None
    test_case_title: Optional[str] = None
    test_run_name: Optional[str] = None
    status: Optional[str] = None
    comment: Optional[str] = None

    source = ActivitySource.TESTRAIL

    # Keep pytest from collecting this class
    __test__ = False

    @property
    def activity(self) -> str:
        return self.kind.value


@dataclass
class JiraActivity:
    """A normalized Jira event."""

    id: str
    user_id: str
    user_name: str
    timestamp: datetime
    kind: ActivityKind
    issue_key: Optional[str] = None
    issue_title: Optional[str] = None
    comment: Optional[str] = None

    source = ActivitySource.JIRA

    @property
    def activity(self) -> str:
        """Short verb used in Jira activity breakdowns."""
        return "created" if self.kind is ActivityKind.ISSUE_CREATED else "commented"


NormalizedActivity = Union[TestRailActivity, JiraActivity]


@dataclass
class ConsolidatedActivity:
    """One row of the merged, user-attributed activity report."""

    user: User
    date: str
    source: ActivitySource
    activity_type: str
    description: str
    details: str
    timestamp: datetime

    @classmethod
    def from_activity(
        cls, activity: NormalizedActivity, user: User
    ) -> "ConsolidatedActivity":
        """Project a normalized activity onto its owning user, in UTC."""
        timestamp = to_utc(activity.timestamp)
        if isinstance(activity, TestRailActivity):
            details = (
                f"Project: {activity.project_name or 'Unknown'}, "
                f"Run: {activity.test_run_name or 'Unknown'}"
            )
            if activity.comment:
                details += f", Comment: {activity.comment}"
            return cls(
                user=user,
                date=format_day(timestamp),
                source=ActivitySource.TESTRAIL,
                activity_type=f"Test Case: {activity.status or 'Unknown'}",
                description=activity.test_case_title or "Unknown Test Case",
                details=details,
                timestamp=timestamp,
            )

        if isinstance(activity, JiraActivity):
            details = f"Issue: {activity.issue_key}"
            if activity.comment:
                details += f", Comment: {activity.comment}"
            return cls(
                user=user,
                date=format_day(timestamp),
                source=ActivitySource.JIRA,
                activity_type=(
                    "Issue Created"
                    if activity.kind is ActivityKind.ISSUE_CREATED
                    else "Comment Added"
                ),
                description=activity.issue_title or "Unknown Issue",
                details=details,
                timestamp=timestamp,
            )

        raise TypeError(f"Unsupported activity type: {type(activity).__name__}")


@dataclass
class DateRange:
    start_date: str
    end_date: str

    def __str__(self) -> str:
        return f"{self.start_date} to {self.end_date}"


@dataclass
class UserReportSummary:
    total_tests_executed: int = 0
    total_test_cases_updated: int = 0
    total_test_runs_created: int = 0
    total_jira_issues_created: int = 0
    total_jira_comments_added: int = 0
    total_activities: int = 0


@dataclass
class UserReport:
    """Activities fetched for a single user, kept per source."""

    user: User
    date_range: DateRange
    testrail_activities: List[TestRailActivity] = field(default_factory=list)
    jira_activities: List[JiraActivity] = field(default_factory=list)
    summary: UserReportSummary = field(default_factory=UserReportSummary)


@dataclass
class UserSummary:
    user: User
    testrail_count: int = 0
    jira_count: int = 0

    @property
    def total_count(self) -> int:
        return self.testrail_count + self.jira_count


@dataclass
class ReportSummary:
    """Aggregate counts derived from a consolidated activity list."""

    date_range: DateRange
    total_users: int
    total_activities: int
    per_source_counts: Dict[ActivitySource, int]
    user_summaries: List[UserSummary]

    @property
    def testrail_activities(self) -> int:
        return self.per_source_counts.get(ActivitySource.TESTRAIL, 0)

    @property
    def jira_activities(self) -> int:
        return self.per_source_counts.get(ActivitySource.JIRA, 0)


@dataclass
class ReportResult:
    user_reports: List[UserReport]
    consolidated: List[ConsolidatedActivity]
    summary: ReportSummary
