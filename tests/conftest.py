"""Pytest configuration and fixtures for the Happy Track tests."""

from datetime import datetime, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock, Mock

import pytest

from happytrack.core.models import ActivityKind, JiraActivity, TestRailActivity, User
from happytrack.core.security_manager import SecurityManager


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def date_range():
    """A one-week reporting window."""
    return utc(2024, 1, 15), utc(2024, 1, 21, 23, 59, 59)


@pytest.fixture
def alice():
    return User(
        id="u-alice",
        name="Alice Tester",
        email="alice@example.com",
        testrail_id="7",
    )


@pytest.fixture
def bob():
    return User(
        id="u-bob",
        name="Bob Developer",
        email="bob@example.com",
        jira_account_id="acc-bob",
    )


@pytest.fixture
def sample_testrail_activities() -> List[TestRailActivity]:
    """Three TestRail executions by Alice within the window."""
    return [
        TestRailActivity(
            id=f"test-{n}-{n + 100}",
            user_id="7",
            user_name="Alice Tester",
            timestamp=utc(2024, 1, 15 + n, 9, 0),
            kind=ActivityKind.TEST_EXECUTION,
            project_name="Mobile",
            test_case_title=f"Login case {n}",
            test_run_name="Sprint 4",
            status="Passed",
        )
        for n in range(3)
    ]


@pytest.fixture
def sample_jira_activities() -> List[JiraActivity]:
    """An issue created and a comment added by Bob within the window."""
    return [
        JiraActivity(
            id="APP-1-created",
            user_id="acc-bob",
            user_name="Bob Developer",
            timestamp=utc(2024, 1, 16, 8, 30),
            kind=ActivityKind.ISSUE_CREATED,
            issue_key="APP-1",
            issue_title="Crash on start",
        ),
        JiraActivity(
            id="APP-1-comment-10",
            user_id="acc-bob",
            user_name="Bob Developer",
            timestamp=utc(2024, 1, 17, 12, 0),
            kind=ActivityKind.COMMENT_ADDED,
            issue_key="APP-1",
            issue_title="Crash on start",
            comment="Reproduced on Android ",
        ),
    ]


def activity_report(activities: List[Any]) -> Dict[str, Any]:
    return {"activities": activities, "summary": {}}


@pytest.fixture
def mock_testrail_client(sample_testrail_activities):
    """Mock TestRail client returning Alice's activity."""
    client = Mock()
    client.get_activity_report = AsyncMock(
        return_value=activity_report(sample_testrail_activities)
    )
    client.test_connection = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_jira_client(sample_jira_activities):
    """Mock Jira client returning Bob's activity."""
    client = Mock()
    client.get_activity_report = AsyncMock(
        return_value=activity_report(sample_jira_activities)
    )
    client.test_connection = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_security_manager():
    """Mock security manager backed by an in-memory dict."""
    vault: Dict[str, str] = {}

    mock_manager = Mock(spec=SecurityManager)
    mock_manager.store_credential.side_effect = (
        lambda service, name, value: vault.__setitem__(f"{service}:{name}", value)
    )
    mock_manager.retrieve_credential.side_effect = (
        lambda service, name: vault.get(f"{service}:{name}")
    )
    mock_manager.delete_credential.side_effect = (
        lambda service, name: vault.pop(f"{service}:{name}", None)
    )
    mock_manager.validate_integrity.return_value = True
    mock_manager.vault = vault
    return mock_manager


# Pytest markers for test categorization
pytest_markers = [
    "unit: Unit tests",
    "integration: Integration tests",
    "security: Security tests",
    "slow: Slow-running tests",
]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    for marker in pytest_markers:
        config.addinivalue_line("markers", marker)
