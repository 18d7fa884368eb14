"""Unit tests for the SMTP email client."""

import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from happytrack.core.config_manager import EmailConfig
from happytrack.core.models import ActivitySource, DateRange, ReportSummary
from happytrack.integrations.email_client import (
    EmailAttachment,
    EmailClient,
    convert_to_html,
    render_template,
)
from happytrack.utils.exceptions import EmailError, ValidationError

START = datetime(2024, 1, 15, tzinfo=timezone.utc)
END = datetime(2024, 1, 21, 23, 59, 59, tzinfo=timezone.utc)


@pytest.fixture
def email_config():
    return EmailConfig(
        smtp_host="smtp.example.com",
        smtp_port=587,
        username="mailer",
        password="secret",
        from_email="reports@example.com",
        to_emails=["lead@example.com"],
        cc_emails=["qa@example.com"],
    )


@pytest.fixture
def smtp():
    """Patch smtplib.SMTP and yield the server mock."""
    with patch("happytrack.integrations.email_client.smtplib.SMTP") as smtp_class:
        server = MagicMock()
        server.has_extn.return_value = True
        smtp_class.return_value = server
        server.__enter__.return_value = server
        yield server


def sent_message(server):
    return server.send_message.call_args[0][0]


class TestHelpers:
    def test_convert_to_html(self):
        assert convert_to_html("Hi\n\nLine one\nLine two") == (
            "<p>Hi</p><p>Line one<br>Line two</p>"
        )

    def test_convert_escapes_markup(self):
        assert convert_to_html("<b>&") == "<p>&lt;b&gt;&amp;</p>"

    def test_empty_paragraphs_collapse(self):
        assert convert_to_html("") == "<br>"

    def test_render_template_replaces_every_placeholder(self):
        assert render_template("{{dateRange}} / {{dateRange}}", "a to b") == "a to b / a to b"


class TestEmailClient:
    """Test suite for EmailClient."""

    def test_send_report_email(self, email_config, smtp, tmp_path):
        report = tmp_path / "r.csv"
        report.write_text("User Name\n")
        summary_file = tmp_path / "s.csv"
        summary_file.write_text("User Name\n")
        summary = ReportSummary(
            date_range=DateRange("2024-01-15", "2024-01-21"),
            total_users=2,
            total_activities=5,
            per_source_counts={ActivitySource.TESTRAIL: 3, ActivitySource.JIRA: 2},
            user_summaries=[],
        )

        message_id = EmailClient(email_config).send_report_email(
            START, END, report, summary_file, summary
        )

        message = sent_message(smtp)
        assert message_id == message["Message-ID"]
        assert message["Subject"] == "Happy Track Report - 2024-01-15 to 2024-01-21"
        assert message["To"] == "lead@example.com"
        assert message["Cc"] == "qa@example.com"

        body = message.get_payload(0).get_payload(0).get_payload(decode=True).decode()
        assert "for the period 2024-01-15 to 2024-01-21." in body
        assert "- TestRail Activities: 3" in body
        assert "- Jira Activities: 2" in body

        attachments = [part for part in message.walk() if part.get_filename()]
        assert [part.get_filename() for part in attachments] == [
            "activity-report-2024-01-15-to-2024-01-21.csv",
            "activity-summary-2024-01-15-to-2024-01-21.csv",
        ]
        assert all(part.get_content_type() == "text/csv" for part in attachments)

        smtp.login.assert_called_once_with("mailer", "secret")
        smtp.starttls.assert_called_once()
        assert smtp.send_message.call_args[1]["to_addrs"] == [
            "lead@example.com",
            "qa@example.com",
        ]

    def test_smtp_failure_raises_email_error(self, email_config, smtp):
        smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

        with pytest.raises(EmailError):
            EmailClient(email_config).send_email(["x@example.com"], "s", "b")

        assert smtp.send_message.call_count == 1

    def test_missing_attachment_raises_email_error(self, email_config, smtp, tmp_path):
        attachment = EmailAttachment("gone.csv", tmp_path / "gone.csv", "text/csv")

        with pytest.raises(EmailError):
            EmailClient(email_config).send_email(
                ["x@example.com"], "s", "b", attachments=[attachment]
            )

        smtp.send_message.assert_not_called()

    def test_attachment_filename_sanitized(self, email_config, smtp, tmp_path):
        path = tmp_path / "r.csv"
        path.write_text("x\n")

        EmailClient(email_config).send_email(
            ["x@example.com"],
            "s",
            "b",
            attachments=[EmailAttachment('../re"port".csv', path, "text/csv")],
        )

        parts = [part for part in sent_message(smtp).walk() if part.get_filename()]
        assert parts[0].get_filename() == "..report.csv"

    def test_no_recipients(self, email_config):
        with pytest.raises(ValidationError):
            EmailClient(email_config).send_email([], "s", "b")

    def test_secure_connection_uses_ssl(self, email_config):
        email_config.smtp_secure = True
        email_config.smtp_port = 465

        with patch("happytrack.integrations.email_client.smtplib.SMTP_SSL") as smtp_ssl:
            server = MagicMock()
            smtp_ssl.return_value = server
            server.__enter__.return_value = server

            assert EmailClient(email_config).test_connection() is True

        assert smtp_ssl.call_args[0] == ("smtp.example.com", 465)

    def test_connection_failure(self, email_config):
        with patch(
            "happytrack.integrations.email_client.smtplib.SMTP",
            side_effect=OSError("unreachable"),
        ):
            assert EmailClient(email_config).test_connection() is False

    def test_validate_config(self, email_config):
        assert EmailClient(email_config).validate_config() == (True, [])

        email_config.from_email = "nope"
        email_config.to_emails = []
        is_valid, errors = EmailClient(email_config).validate_config()

        assert is_valid is False
        assert "From email address format is invalid" in errors
        assert "At least one recipient email address is required" in errors

    def test_send_test_email(self, email_config, smtp):
        EmailClient(email_config).send_test_email()

        assert sent_message(smtp)["Subject"] == "Happy Track - Email Configuration Test"
