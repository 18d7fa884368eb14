"""Consolidation engine: merges per-user TestRail and Jira activity into one report."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..integrations.jira_client import JiraClient
from ..integrations.testrail_client import TestRailClient
from ..utils.date_utils import ensure_aware, format_day
from ..utils.exceptions import ValidationError
from ..utils.logging_config import get_logger
from .models import (
    ActivitySource,
    ConsolidatedActivity,
    DateRange,
    JiraActivity,
    ReportResult,
    ReportSummary,
    TestRailActivity,
    User,
    UserReport,
    UserReportSummary,
    UserSummary,
)


class ReportService:
    """Builds consolidated activity reports for a set of users.

    Either client may be None, in which case that source contributes
    nothing. Users are processed one at a time, in the order given. The
    optional project filters are handed to the matching adapter on every
    fetch.
    """

    def __init__(
        self,
        testrail_client: Optional[TestRailClient] = None,
        jira_client: Optional[JiraClient] = None,
        testrail_project_id: Optional[int] = None,
        jira_project_key: Optional[str] = None,
    ):
        self.testrail_client = testrail_client
        self.jira_client = jira_client
        self.testrail_project_id = testrail_project_id
        self.jira_project_key = jira_project_key or None
        self.logger = get_logger(__name__)

    async def generate_report(
        self, users: List[User], start_date: datetime, end_date: datetime
    ) -> ReportResult:
        """Fetch, consolidate and summarize activity for ``users``.

        A failure fetching one user's activity from one source is logged and
        leaves that user's list for that source empty; it never aborts the
        report.

        Raises:
            ValidationError: If ``start_date`` is after ``end_date``.
        """
        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        if start_date > end_date:
            raise ValidationError("Start date must be before end date")

        date_range = DateRange(format_day(start_date), format_day(end_date))
        user_reports: List[UserReport] = []
        consolidated: List[ConsolidatedActivity] = []

        self.logger.info(
            f"Generating report for {len(users)} user(s) covering {date_range}"
        )

        for user in users:
            testrail_activities = await self._fetch_testrail(user, start_date, end_date)
            jira_activities = await self._fetch_jira(user, start_date, end_date)

            user_reports.append(
                UserReport(
                    user=user,
                    date_range=date_range,
                    testrail_activities=testrail_activities,
                    jira_activities=jira_activities,
                    summary=self._summarize_user(testrail_activities, jira_activities),
                )
            )

            for activity in [*testrail_activities, *jira_activities]:
                consolidated.append(ConsolidatedActivity.from_activity(activity, user))

        # list.sort is stable, so ties keep fetch order
        consolidated.sort(key=lambda activity: activity.timestamp)

        summary = self.build_summary(users, consolidated, date_range)

        self.logger.info(
            f"Report generated with {summary.total_activities} activities"
        )
        return ReportResult(
            user_reports=user_reports, consolidated=consolidated, summary=summary
        )

    async def _fetch_testrail(
        self, user: User, start_date: datetime, end_date: datetime
    ) -> List[TestRailActivity]:
        if not (user.testrail_id and self.testrail_client):
            return []

        try:
            report = await self.testrail_client.get_activity_report(
                [user.testrail_id],
                start_date,
                end_date,
                project_id=self.testrail_project_id,
            )
            return report["activities"]
        except Exception as e:
            self.logger.error(f"Failed to fetch TestRail activities for {user.name}: {e}")
            return []

    async def _fetch_jira(
        self, user: User, start_date: datetime, end_date: datetime
    ) -> List[JiraActivity]:
        if not (user.jira_account_id and self.jira_client):
            return []

        try:
            report = await self.jira_client.get_activity_report(
                [user.jira_account_id],
                start_date,
                end_date,
                project_key=self.jira_project_key,
            )
            return report["activities"]
        except Exception as e:
            self.logger.error(f"Failed to fetch Jira activities for {user.name}: {e}")
            return []

    @staticmethod
    def _summarize_user(
        testrail_activities: List[TestRailActivity],
        jira_activities: List[JiraActivity],
    ) -> UserReportSummary:
        created = sum(1 for a in jira_activities if a.activity == "created")
        return UserReportSummary(
            total_tests_executed=len(testrail_activities),
            total_jira_issues_created=created,
            total_jira_comments_added=len(jira_activities) - created,
            total_activities=len(testrail_activities) + len(jira_activities),
        )

    @staticmethod
    def build_summary(
        users: List[User],
        consolidated: List[ConsolidatedActivity],
        date_range: DateRange,
    ) -> ReportSummary:
        """Count activities per source and per user in a single pass."""
        per_source = {source: 0 for source in ActivitySource}
        per_user = {user.id: UserSummary(user=user) for user in users}

        for activity in consolidated:
            per_source[activity.source] += 1

            user_summary = per_user.get(activity.user.id)
            if user_summary is None:
                continue
            if activity.source is ActivitySource.TESTRAIL:
                user_summary.testrail_count += 1
            else:
                user_summary.jira_count += 1

        return ReportSummary(
            date_range=date_range,
            total_users=len(users),
            total_activities=len(consolidated),
            per_source_counts=per_source,
            user_summaries=list(per_user.values()),
        )

    async def test_connections(self) -> Dict[str, bool]:
        """Check both configured sources; an absent client reports False."""
        results = {"testrail": False, "jira": False}

        if self.testrail_client:
            results["testrail"] = await self.testrail_client.test_connection()

        if self.jira_client:
            results["jira"] = await self.jira_client.test_connection()

        return results

    @staticmethod
    def get_activity_breakdown(
        consolidated: List[ConsolidatedActivity],
    ) -> Dict[str, Dict[str, List[ConsolidatedActivity]]]:
        """Group activities by user id, by day and by source name."""
        by_user: Dict[str, List[ConsolidatedActivity]] = {}
        by_date: Dict[str, List[ConsolidatedActivity]] = {}
        by_source: Dict[str, List[ConsolidatedActivity]] = {}

        for activity in consolidated:
            by_user.setdefault(activity.user.id, []).append(activity)
            by_date.setdefault(activity.date, []).append(activity)
            by_source.setdefault(activity.source.value, []).append(activity)

        return {"by_user": by_user, "by_date": by_date, "by_source": by_source}

    def get_activity_statistics(
        self, consolidated: List[ConsolidatedActivity]
    ) -> Dict[str, Any]:
        breakdown = self.get_activity_breakdown(consolidated)
        total = len(consolidated)
        unique_users = len(breakdown["by_user"])
        unique_days = len(breakdown["by_date"])

        most_active_user = None
        for activities in breakdown["by_user"].values():
            if most_active_user is None or len(activities) > most_active_user["count"]:
                most_active_user = {"user": activities[0].user, "count": len(activities)}

        most_active_day = None
        for day, activities in breakdown["by_date"].items():
            if most_active_day is None or len(activities) > most_active_day["count"]:
                most_active_day = {"date": day, "count": len(activities)}

        distribution: Dict[str, int] = {}
        for activity in consolidated:
            distribution[activity.activity_type] = (
                distribution.get(activity.activity_type, 0) + 1
            )

        return {
            "total_activities": total,
            "average_activities_per_user": total / unique_users if unique_users else 0,
            "average_activities_per_day": total / unique_days if unique_days else 0,
            "most_active_user": most_active_user,
            "most_active_day": most_active_day,
            "activity_type_distribution": distribution,
        }
