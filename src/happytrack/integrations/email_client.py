"""SMTP email client for delivering finished reports."""

import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core.config_manager import EmailConfig
from ..core.models import ReportSummary
from ..utils.date_utils import format_date_range, format_day
from ..utils.exceptions import EmailError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.validators import EMAIL_PATTERN, InputValidator

DATE_RANGE_PLACEHOLDER = "{{dateRange}}"


@dataclass
class EmailAttachment:
    filename: str
    path: Path
    content_type: str = "application/octet-stream"


def convert_to_html(text: str) -> str:
    """Wrap plain text in a minimal paragraph structure."""
    escaped = InputValidator.escape_html(text)
    html = escaped.replace("\n\n", "</p><p>").replace("\n", "<br>")
    html = f"<p>{html}</p>"
    return html.replace("<p></p>", "<br>")


def render_template(template: str, date_range: str) -> str:
    return template.replace(DATE_RANGE_PLACEHOLDER, date_range)


class EmailClient:
    """Send report emails through an SMTP server."""

    def __init__(self, config: EmailConfig, timeout: int = 30):
        self.config = config
        self.timeout = timeout
        self.logger = get_logger(__name__)

    def _connect(self) -> smtplib.SMTP:
        if self.config.smtp_secure:
            return smtplib.SMTP_SSL(
                self.config.smtp_host,
                self.config.smtp_port,
                timeout=self.timeout,
                context=ssl.create_default_context(),
            )

        server = smtplib.SMTP(
            self.config.smtp_host, self.config.smtp_port, timeout=self.timeout
        )
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls(context=ssl.create_default_context())
            server.ehlo()
        return server

    def test_connection(self) -> bool:
        """Check that the SMTP server accepts the configured login."""
        try:
            with self._connect() as server:
                if self.config.username:
                    server.login(self.config.username, self.config.password)
            return True
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Email connection test failed: {e}")
            return False

    def build_message(
        self,
        to: List[str],
        subject: str,
        body: str,
        cc: Optional[List[str]] = None,
        attachments: Optional[List[EmailAttachment]] = None,
    ) -> MIMEMultipart:
        message = MIMEMultipart("mixed")
        message["From"] = self.config.from_email
        message["To"] = ", ".join(to)
        if cc:
            message["Cc"] = ", ".join(cc)
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()

        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(body, "plain", "utf-8"))
        alternative.attach(MIMEText(convert_to_html(body), "html", "utf-8"))
        message.attach(alternative)

        for attachment in attachments or []:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEBase(maintype, subtype or "octet-stream")
            part.set_payload(Path(attachment.path).read_bytes())
            encoders.encode_base64(part)
            part.add_header(
                "Content-Disposition",
                "attachment",
                filename=InputValidator.sanitize_filename(attachment.filename),
            )
            message.attach(part)

        return message

    def send_email(
        self,
        to: List[str],
        subject: str,
        body: str,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
        attachments: Optional[List[EmailAttachment]] = None,
    ) -> str:
        """Send an email with optional attachments.

        Returns:
            The Message-ID of the sent email.

        Raises:
            EmailError: If the message cannot be built or the SMTP server
                rejects it. Delivery is not retried.
        """
        if not to:
            raise ValidationError("At least one recipient email address is required")

        try:
            message = self.build_message(to, subject, body, cc, attachments)
        except OSError as e:
            raise EmailError(f"Failed to read attachment: {e}") from e

        recipients = list(to) + list(cc or []) + list(bcc or [])

        try:
            with self._connect() as server:
                if self.config.username:
                    server.login(self.config.username, self.config.password)
                server.send_message(message, to_addrs=recipients)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send email: {e}")
            raise EmailError(f"Failed to send email: {e}") from e

        self.logger.info(f"Email sent to {len(recipients)} recipient(s)")
        return message["Message-ID"]

    def send_report_email(
        self,
        start_date: datetime,
        end_date: datetime,
        report_path: Union[str, Path],
        summary_path: Optional[Union[str, Path]] = None,
        summary: Optional[ReportSummary] = None,
    ) -> str:
        """Send the generated report files using the configured templates."""
        date_range = format_date_range(start_date, end_date)

        subject = render_template(self.config.subject, date_range)
        body = render_template(self.config.body_template, date_range)

        if summary is not None:
            body += "\n\nReport Summary:"
            body += f"\n- Total Users: {summary.total_users}"
            body += f"\n- Total Activities: {summary.total_activities}"
            body += f"\n- TestRail Activities: {summary.testrail_activities}"
            body += f"\n- Jira Activities: {summary.jira_activities}"

        body += "\n\nPlease find the detailed activity report attached."
        body += "\n\nThis report was generated automatically by Happy Track."

        file_range = f"{format_day(start_date)}-to-{format_day(end_date)}"
        attachments = [
            EmailAttachment(
                filename=f"activity-report-{file_range}.csv",
                path=Path(report_path),
                content_type="text/csv",
            )
        ]

        if summary_path:
            attachments.append(
                EmailAttachment(
                    filename=f"activity-summary-{file_range}.csv",
                    path=Path(summary_path),
                    content_type="text/csv",
                )
            )

        return self.send_email(
            to=self.config.to_emails,
            cc=self.config.cc_emails or None,
            subject=subject,
            body=body,
            attachments=attachments,
        )

    def send_test_email(self) -> str:
        """Send a test email to verify configuration."""
        body = (
            "This is a test email to verify your Happy Track email configuration.\n\n"
            "Email Settings:\n"
            f"- SMTP Host: {self.config.smtp_host}\n"
            f"- SMTP Port: {self.config.smtp_port}\n"
            f"- From Email: {self.config.from_email}\n"
            f"- Secure Connection: {'Yes' if self.config.smtp_secure else 'No'}\n\n"
            "If you received this email, your email configuration is working correctly!\n\n"
            f"Timestamp: {datetime.now(timezone.utc).isoformat()}"
        )

        return self.send_email(
            to=self.config.to_emails,
            cc=self.config.cc_emails or None,
            subject="Happy Track - Email Configuration Test",
            body=body,
        )

    def validate_config(self) -> Tuple[bool, List[str]]:
        """Validate email configuration."""
        errors = []

        if not self.config.smtp_host:
            errors.append("SMTP host is required")

        if not self.config.smtp_port or self.config.smtp_port <= 0:
            errors.append("Valid SMTP port is required")

        if not self.config.username:
            errors.append("SMTP username is required")

        if not self.config.password:
            errors.append("SMTP password is required")

        if not self.config.from_email:
            errors.append("From email address is required")
        elif not EMAIL_PATTERN.match(self.config.from_email):
            errors.append("From email address format is invalid")

        if not self.config.to_emails:
            errors.append("At least one recipient email address is required")

        for index, email in enumerate(self.config.to_emails, start=1):
            if not EMAIL_PATTERN.match(email):
                errors.append(f"To email address {index} format is invalid")

        for index, email in enumerate(self.config.cc_emails or [], start=1):
            if not EMAIL_PATTERN.match(email):
                errors.append(f"CC email address {index} format is invalid")

        return len(errors) == 0, errors

    def get_status(self) -> Dict[str, Any]:
        is_valid, errors = self.validate_config()
        connected = self.test_connection() if is_valid else False

        return {
            "configured": is_valid,
            "connected": connected,
            "validation": {"is_valid": is_valid, "errors": errors},
        }
