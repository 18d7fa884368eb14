"""TestRail integration client for fetching test execution activity."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from yarl import URL

from ..core.models import ActivityKind, TestRailActivity
from ..utils.date_utils import ensure_aware, from_unix_timestamp
from ..utils.exceptions import (
    AuthenticationError,
    HappyTrackError,
    RemoteError,
    ValidationError,
)
from ..utils.validators import InputValidator
from .base_client import BaseIntegrationClient

# Status names containing any of these are not counted as user activity
EXCLUDED_STATUS_MARKERS = ("skip", "not applicable", "blocked")


class TestRailClient(BaseIntegrationClient):
    """Client for the TestRail v2 REST API.

    Authentication uses HTTP basic auth with the API key as the password.
    """

    service_name = "testrail"
    __test__ = False

    def __init__(
        self,
        url: str,
        username: str,
        api_key: str,
        rate_limit: int = 180,
        timeout: int = 30,
        max_retries: int = 0,
        drop_unresolved_results: bool = True,
    ):
        InputValidator.validate_url(url)
        InputValidator.validate_required(username, "TestRail username")
        InputValidator.validate_required(api_key, "TestRail API key")

        self.url = url.rstrip("/")
        self.drop_unresolved_results = drop_unresolved_results

        super().__init__(
            base_url=f"{self.url}/index.php?/api/v2",
            username=username,
            password=api_key,
            rate_limit=rate_limit,
            timeout=timeout,
            max_retries=max_retries,
        )

    def _build_url(self, endpoint: str) -> URL:
        # TestRail routes through the query string ("index.php?/api/v2/...");
        # the URL must reach the server exactly as built.
        return URL(super()._build_url(endpoint), encoded=True)

    async def _get_paginated(self, endpoint: str, key: str) -> List[Dict[str, Any]]:
        """Fetch every page of a list endpoint.

        TestRail 6.7+ wraps bulk responses in ``{"<key>": [...], "_links":
        {"next": ...}}``; older servers return a bare list.
        """
        items: List[Dict[str, Any]] = []
        next_endpoint: Optional[str] = endpoint

        while next_endpoint:
            data = await self.get(next_endpoint)

            if isinstance(data, list):
                items.extend(data)
                break

            items.extend(data.get(key) or [])
            next_link = (data.get("_links") or {}).get("next")
            next_endpoint = next_link.split("/api/v2/", 1)[-1] if next_link else None

        return items

    async def test_connection(self) -> bool:
        """Test the API connection and authentication."""
        try:
            await self.get(f"get_user_by_email&email={quote(self.username)}")
            self.security_logger.log_authentication_attempt(
                service=self.service_name, username=self.username, success=True
            )
            return True
        except Exception as e:
            self.logger.error(f"TestRail connection test failed: {e}")
            return False

    async def get_projects(self) -> List[Dict[str, Any]]:
        return await self._get_paginated("get_projects", "projects")

    async def get_project(self, project_id: int) -> Dict[str, Any]:
        return await self.get(f"get_project/{project_id}")

    async def get_users(self) -> List[Dict[str, Any]]:
        return await self._get_paginated("get_users", "users")

    async def get_statuses(self) -> List[Dict[str, Any]]:
        return await self.get("get_statuses")

    async def get_suites(self, project_id: int) -> List[Dict[str, Any]]:
        return await self.get(f"get_suites/{project_id}")

    async def get_sections(
        self, project_id: int, suite_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        endpoint = f"get_sections/{project_id}"
        if suite_id:
            endpoint += f"&suite_id={suite_id}"
        return await self._get_paginated(endpoint, "sections")

    async def get_test_runs(
        self, project_id: int, suite_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        endpoint = f"get_runs/{project_id}"
        if suite_id:
            endpoint += f"&suite_id={suite_id}"
        return await self._get_paginated(endpoint, "runs")

    async def get_tests(self, run_id: int) -> List[Dict[str, Any]]:
        return await self._get_paginated(f"get_tests/{run_id}", "tests")

    async def get_test_results(self, run_id: int) -> List[Dict[str, Any]]:
        return await self._get_paginated(f"get_results_for_run/{run_id}", "results")

    async def get_test_cases(
        self, project_id: int, suite_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        endpoint = f"get_cases/{project_id}"
        if suite_id:
            endpoint += f"&suite_id={suite_id}"
        return await self._get_paginated(endpoint, "cases")

    @staticmethod
    def excluded_status_ids(statuses: Iterable[Dict[str, Any]]) -> set:
        """Ids of statuses that do not represent a real test execution."""
        excluded = set()
        for status in statuses:
            name = (status.get("name") or "").lower()
            label = (status.get("label") or "").lower()
            if any(marker in name or marker in label for marker in EXCLUDED_STATUS_MARKERS):
                excluded.add(status["id"])
        return excluded

    async def get_user_activities(
        self,
        user_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_id: Optional[int] = None,
    ) -> List[TestRailActivity]:
        """Get test executions recorded by ``user_ids`` within the date range.

        Results whose test case, user or status cannot be resolved are dropped
        unless ``drop_unresolved_results`` is disabled, in which case they are
        reported with placeholder labels.

        Raises:
            RemoteError: If projects, users or statuses cannot be fetched.
        """
        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        if start_date > end_date:
            raise ValidationError("Start date must be before end date")

        wanted = {str(user_id) for user_id in user_ids}

        try:
            if project_id:
                projects = [await self.get_project(project_id)]
            else:
                projects = await self.get_projects()

            statuses = {s["id"]: s for s in await self.get_statuses()}
            users = {u["id"]: u for u in await self.get_users()}
            skip_statuses = self.excluded_status_ids(statuses.values())

            activities: List[TestRailActivity] = []
            dropped = 0

            for project in projects:
                if not project.get("id"):
                    continue

                project_activities, project_dropped = await self._collect_project(
                    project, wanted, start_date, end_date, statuses, users, skip_statuses
                )
                activities.extend(project_activities)
                dropped += project_dropped

            if dropped:
                self.logger.debug(
                    f"Dropped {dropped} TestRail results with unresolved case, user or status"
                )

            self.logger.info(f"Fetched {len(activities)} TestRail activities")
            return activities

        except HappyTrackError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to fetch TestRail user activities: {e}")
            raise RemoteError(f"Failed to fetch user activities from TestRail: {e}")

    async def _collect_project(
        self,
        project: Dict[str, Any],
        wanted: set,
        start_date: datetime,
        end_date: datetime,
        statuses: Dict[int, Dict[str, Any]],
        users: Dict[int, Dict[str, Any]],
        skip_statuses: set,
    ) -> tuple:
        project_id = project["id"]
        project_name = project.get("name") or f"Project {project_id}"

        suites = await self.get_suites(project_id)
        runs = await self.get_test_runs(project_id)

        # Single-suite projects may report runs without a suite id
        default_suite_id = suites[0]["id"] if len(suites) == 1 else None

        activities: List[TestRailActivity] = []
        dropped = 0
        case_catalogs: Dict[Optional[int], Dict[int, Dict[str, Any]]] = {}

        for run in runs:
            try:
                results = await self.get_test_results(run["id"])
                in_window = [
                    r
                    for r in results
                    if self._result_matches(r, wanted, start_date, end_date, skip_statuses)
                ]
                if not in_window:
                    continue

                suite_id = run.get("suite_id") or default_suite_id
                if suite_id not in case_catalogs:
                    cases = await self.get_test_cases(project_id, suite_id)
                    case_catalogs[suite_id] = {c["id"]: c for c in cases}
                case_map = case_catalogs[suite_id]

                test_case_ids = {
                    t["id"]: t.get("case_id") for t in await self.get_tests(run["id"])
                }

            except AuthenticationError:
                raise
            except RemoteError as e:
                self.logger.warning(
                    f"Skipping TestRail run {run.get('id')} in project {project_id}: {e}"
                )
                continue

            for result in in_window:
                case_id = result.get("case_id") or test_case_ids.get(result["test_id"])
                test_case = case_map.get(case_id)
                user = users.get(result["created_by"])
                status = statuses.get(result["status_id"])

                if not (test_case and user and status):
                    if self.drop_unresolved_results:
                        dropped += 1
                        continue

                activities.append(
                    TestRailActivity(
                        id=f"test-{result['test_id']}-{result['id']}",
                        user_id=str(result["created_by"]),
                        user_name=(user or {}).get("name") or "Unknown",
                        timestamp=from_unix_timestamp(result["created_on"]),
                        kind=ActivityKind.TEST_EXECUTION,
                        project_name=project_name,
                        test_case_title=(test_case or {}).get("title") or "Unknown Test Case",
                        test_run_name=run.get("name"),
                        status=(status or {}).get("label")
                        or (status or {}).get("name")
                        or "Unknown",
                        comment=result.get("comment") or None,
                    )
                )

        return activities, dropped

    @staticmethod
    def _result_matches(
        result: Dict[str, Any],
        wanted: set,
        start_date: datetime,
        end_date: datetime,
        skip_statuses: set,
    ) -> bool:
        created_on = result.get("created_on")
        if created_on is None:
            return False

        result_date = from_unix_timestamp(created_on)
        return (
            start_date <= result_date <= end_date
            and str(result.get("created_by")) in wanted
            and result.get("status_id") not in skip_statuses
        )

    async def get_activity_report(
        self,
        user_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Get activities plus per-user, per-status and per-project counts."""
        activities = await self.get_user_activities(
            user_ids, start_date, end_date, project_id
        )
        return {
            "activities": activities,
            "summary": TestRailActivitySummary.summarize_activities(activities),
        }


class TestRailActivitySummary:
    """Summarize TestRail activity data."""

    __test__ = False

    @staticmethod
    def summarize_activities(activities: List[TestRailActivity]) -> Dict[str, Any]:
        user_activities: Dict[str, int] = {}
        status_breakdown: Dict[str, int] = {}
        project_breakdown: Dict[str, int] = {}

        for activity in activities:
            user_activities[activity.user_id] = (
                user_activities.get(activity.user_id, 0) + 1
            )

            if activity.status:
                status_breakdown[activity.status] = (
                    status_breakdown.get(activity.status, 0) + 1
                )

            if activity.project_name:
                project_breakdown[activity.project_name] = (
                    project_breakdown.get(activity.project_name, 0) + 1
                )

        return {
            "total_activities": len(activities),
            "user_activities": user_activities,
            "status_breakdown": status_breakdown,
            "project_breakdown": project_breakdown,
        }
