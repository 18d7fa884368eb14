"""Jira integration client for fetching issue and comment activity."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.models import ActivityKind, JiraActivity
from ..utils.date_utils import ensure_aware, format_day, parse_iso_datetime
from ..utils.exceptions import HappyTrackError, RemoteError, ValidationError
from ..utils.validators import InputValidator
from .base_client import BaseIntegrationClient

SEARCH_PAGE_SIZE = 100
COMMENT_PAGE_SIZE = 100


def extract_text_from_adf(node: Any) -> str:
    """Convert an Atlassian Document Format node to plain text.

    Text nodes are concatenated depth-first and every paragraph is followed by
    a single space; all other formatting is discarded.
    """
    if not isinstance(node, dict):
        return ""

    text = ""

    if node.get("type") == "text":
        text += node.get("text") or ""

    for child in node.get("content") or []:
        text += extract_text_from_adf(child)

    if node.get("type") == "paragraph":
        text += " "

    return text


def comment_body_to_text(body: Any) -> str:
    """Plain text for a comment body (ADF document or legacy wiki string)."""
    if isinstance(body, str):
        return body
    return extract_text_from_adf(body)


class JiraClient(BaseIntegrationClient):
    """Client for the Jira Cloud REST API v3."""

    service_name = "jira"

    def __init__(
        self,
        url: str,
        username: str,
        api_token: str,
        rate_limit: int = 100,
        timeout: int = 30,
        max_retries: int = 0,
        max_results: int = 1000,
    ):
        InputValidator.validate_url(url)
        InputValidator.validate_required(username, "Jira username")
        InputValidator.validate_required(api_token, "Jira API token")

        self.url = url.rstrip("/")
        self.max_results = max_results

        super().__init__(
            base_url=f"{self.url}/rest/api/3",
            username=username,
            password=api_token,
            rate_limit=rate_limit,
            timeout=timeout,
            max_retries=max_retries,
        )

    async def test_connection(self) -> bool:
        """Test the API connection."""
        try:
            user = await self.get_current_user()
            self.logger.info(f"Connected to Jira as user: {user.get('displayName')}")
            self.security_logger.log_authentication_attempt(
                service=self.service_name, username=self.username, success=True
            )
            return True
        except Exception as e:
            self.logger.error(f"Jira connection test failed: {e}")
            return False

    async def get_current_user(self) -> Dict[str, Any]:
        return await self.get("myself")

    async def get_projects(self) -> List[Dict[str, Any]]:
        return await self.get("project")

    async def search_users(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"query": query} if query else None
        return await self.get("users/search", params=params)

    async def get_user(self, account_id: str) -> Dict[str, Any]:
        return await self.get("user", params={"accountId": account_id})

    async def get_issue(self, issue_key: str) -> Dict[str, Any]:
        return await self.get(f"issue/{issue_key}")

    async def search_issues(
        self,
        jql: str,
        fields: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
        max_results: int = SEARCH_PAGE_SIZE,
        next_page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a single page of a JQL search against ``search/jql``."""
        params: Dict[str, Any] = {
            "jql": jql,
            "maxResults": max_results,
        }

        if fields:
            params["fields"] = ",".join(fields)

        if expand:
            params["expand"] = ",".join(expand)

        if next_page_token:
            params["nextPageToken"] = next_page_token

        return await self.get("search/jql", params=params)

    async def search_all_issues(
        self,
        jql: str,
        fields: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Follow ``nextPageToken`` pages, returning at most ``limit`` issues."""
        limit = self.max_results if limit is None else limit
        issues: List[Dict[str, Any]] = []
        next_page_token = None

        while len(issues) < limit:
            page_size = min(SEARCH_PAGE_SIZE, limit - len(issues))
            page = await self.search_issues(
                jql, fields=fields, max_results=page_size, next_page_token=next_page_token
            )

            page_issues = page.get("issues") or []
            issues.extend(page_issues)
            next_page_token = page.get("nextPageToken")

            if not page_issues or page.get("isLast", True) or not next_page_token:
                break

        if len(issues) >= limit:
            self.logger.warning(f"JQL search truncated at {limit} issues")

        return issues[:limit]

    async def get_issue_comments(self, issue_key: str) -> List[Dict[str, Any]]:
        """Get every comment on an issue."""
        comments: List[Dict[str, Any]] = []
        start_at = 0

        while True:
            page = await self.get(
                f"issue/{issue_key}/comment",
                params={"startAt": start_at, "maxResults": COMMENT_PAGE_SIZE},
            )
            page_comments = page.get("comments") or []
            comments.extend(page_comments)
            start_at += len(page_comments)

            if not page_comments or start_at >= page.get("total", 0):
                return comments

    @staticmethod
    def build_date_clause(field: str, start_date: datetime, end_date: datetime) -> str:
        """JQL clause covering whole days, including the end day's final minute."""
        return (
            f'{field} >= "{format_day(start_date)}" '
            f'AND {field} <= "{format_day(end_date)} 23:59"'
        )

    @staticmethod
    def build_project_clause(project_key: Optional[str]) -> str:
        if not project_key:
            return ""
        return f' AND project = "{InputValidator.escape_jql_value(project_key)}"'

    def build_created_query(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str] = None,
    ) -> str:
        ids = ",".join(
            f'"{InputValidator.escape_jql_value(account_id)}"' for account_id in account_ids
        )
        return (
            f"creator in ({ids}) AND "
            f"{self.build_date_clause('created', start_date, end_date)}"
            f"{self.build_project_clause(project_key)}"
        )

    def build_updated_query(
        self,
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str] = None,
    ) -> str:
        return (
            f"{self.build_date_clause('updated', start_date, end_date)}"
            f"{self.build_project_clause(project_key)}"
        )

    async def get_user_activities(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str] = None,
    ) -> List[JiraActivity]:
        """Get issues created and comments added by ``account_ids``.

        Issues updated within the window are scanned for comments regardless
        of who updated them. A failure fetching or reading one issue's comments
        is logged and that issue is skipped; the remaining issues are still
        processed.

        Raises:
            RemoteError: If either JQL search fails.
        """
        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        if start_date > end_date:
            raise ValidationError("Start date must be before end date")

        if not account_ids:
            return []

        try:
            activities = await self._collect_created_issues(
                account_ids, start_date, end_date, project_key
            )
            activities.extend(
                await self._collect_comments(
                    account_ids, start_date, end_date, project_key
                )
            )

            activities.sort(key=lambda activity: activity.timestamp)

            self.logger.info(f"Fetched {len(activities)} Jira activities")
            return activities

        except HappyTrackError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to fetch Jira user activities: {e}")
            raise RemoteError(f"Failed to fetch user activities from Jira: {e}")

    async def _collect_created_issues(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str],
    ) -> List[JiraActivity]:
        jql = self.build_created_query(account_ids, start_date, end_date, project_key)
        self.logger.debug(f"Created-issue JQL: {jql}")

        issues = await self.search_all_issues(
            jql, fields=["summary", "created", "creator", "project", "issuetype"]
        )

        activities = []
        for issue in issues:
            fields = issue.get("fields") or {}
            creator = fields.get("creator") or {}
            created = parse_iso_datetime(fields["created"])

            # JQL compares in the server's time zone at minute precision
            if not start_date <= created <= end_date:
                continue
            if creator.get("accountId") not in account_ids:
                continue

            activities.append(
                JiraActivity(
                    id=f"{issue['key']}-created",
                    user_id=creator["accountId"],
                    user_name=creator.get("displayName") or "Unknown",
                    timestamp=created,
                    kind=ActivityKind.ISSUE_CREATED,
                    issue_key=issue["key"],
                    issue_title=fields.get("summary"),
                )
            )

        return activities

    async def _collect_comments(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str],
    ) -> List[JiraActivity]:
        jql = self.build_updated_query(start_date, end_date, project_key)
        self.logger.debug(f"Updated-issue JQL: {jql}")

        issues = await self.search_all_issues(jql, fields=["summary", "updated", "project"])

        activities = []
        for issue in issues:
            issue_key = issue.get("key")
            try:
                comments = await self.get_issue_comments(issue_key)
                activities.extend(
                    self._comment_activities(
                        issue, comments, account_ids, start_date, end_date
                    )
                )
            except (HappyTrackError, KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping comments for issue {issue_key}: {e}")

        return activities

    @staticmethod
    def _comment_activities(
        issue: Dict[str, Any],
        comments: List[Dict[str, Any]],
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
    ) -> List[JiraActivity]:
        issue_key = issue["key"]
        summary = (issue.get("fields") or {}).get("summary")

        activities = []
        for comment in comments:
            author = comment.get("author") or {}
            created = parse_iso_datetime(comment["created"])

            if not start_date <= created <= end_date:
                continue
            if author.get("accountId") not in account_ids:
                continue

            activities.append(
                JiraActivity(
                    id=f"{issue_key}-comment-{comment['id']}",
                    user_id=author["accountId"],
                    user_name=author.get("displayName") or "Unknown",
                    timestamp=created,
                    kind=ActivityKind.COMMENT_ADDED,
                    issue_key=issue_key,
                    issue_title=summary,
                    comment=comment_body_to_text(comment.get("body")),
                )
            )

        return activities

    async def get_activity_report(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Get activities plus per-user and per-kind counts."""
        activities = await self.get_user_activities(
            account_ids, start_date, end_date, project_key
        )
        return {
            "activities": activities,
            "summary": JiraActivitySummary.summarize_activities(activities),
        }

    async def get_user_activities_detailed(
        self,
        account_ids: List[str],
        start_date: datetime,
        end_date: datetime,
        project_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Get activities along with the full record of every issue involved."""
        activities = await self.get_user_activities(
            account_ids, start_date, end_date, project_key
        )

        issue_details: Dict[str, Dict[str, Any]] = {}
        for issue_key in dict.fromkeys(a.issue_key for a in activities if a.issue_key):
            try:
                issue_details[issue_key] = await self.get_issue(issue_key)
            except HappyTrackError as e:
                self.logger.warning(f"Failed to fetch details for issue {issue_key}: {e}")

        return {"activities": activities, "issue_details": issue_details}


class JiraActivitySummary:
    """Summarize Jira activity data."""

    @staticmethod
    def summarize_activities(activities: List[JiraActivity]) -> Dict[str, Any]:
        user_activities: Dict[str, int] = {}
        activity_type_breakdown: Dict[str, int] = {}
        new_issues_count = 0
        comments_count = 0

        for activity in activities:
            user_activities[activity.user_id] = (
                user_activities.get(activity.user_id, 0) + 1
            )
            activity_type_breakdown[activity.activity] = (
                activity_type_breakdown.get(activity.activity, 0) + 1
            )

            if activity.kind is ActivityKind.ISSUE_CREATED:
                new_issues_count += 1
            elif activity.kind is ActivityKind.COMMENT_ADDED:
                comments_count += 1

        return {
            "total_activities": len(activities),
            "user_activities": user_activities,
            "activity_type_breakdown": activity_type_breakdown,
            "new_issues_count": new_issues_count,
            "comments_count": comments_count,
        }
