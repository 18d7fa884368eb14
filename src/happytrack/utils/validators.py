"""Input validation utilities for configuration and report parameters."""

import html
import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Union
from urllib.parse import urlparse

from .exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class InputValidator:
    """Input validation and sanitization."""

    VALID_SCHEMES = ["http", "https"]

    # Characters that must be escaped inside a quoted JQL string literal
    JQL_ESCAPES = [("\\", "\\\\"), ('"', '\\"'), ("'", "\\'")]

    @staticmethod
    def validate_url(url: str) -> bool:
        """Validate URL format."""
        if not url:
            raise ValidationError("URL is required")

        parsed = urlparse(url)

        if parsed.scheme not in InputValidator.VALID_SCHEMES:
            raise ValidationError(f"URL must use http or https, got: {url}")

        if not parsed.hostname:
            raise ValidationError(f"URL must have a valid hostname: {url}")

        if not re.match(
            r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*$",
            parsed.hostname,
        ):
            raise ValidationError(f"Invalid hostname format: {parsed.hostname}")

        return True

    @staticmethod
    def validate_email(email: str) -> bool:
        """Validate a single email address."""
        if not email:
            raise ValidationError("Email is required")

        if not EMAIL_PATTERN.match(email):
            raise ValidationError(f"Invalid email format: {email}")

        return True

    @staticmethod
    def validate_email_list(emails: Union[str, Iterable[str]]) -> List[str]:
        """Validate a comma-separated string or list of email addresses.

        Returns:
            The parsed list of addresses.
        """
        if isinstance(emails, str):
            email_list = [e.strip() for e in emails.split(",") if e.strip()]
        else:
            email_list = [e.strip() for e in emails if e and e.strip()]

        if not email_list:
            raise ValidationError("At least one email address is required")

        invalid = [e for e in email_list if not EMAIL_PATTERN.match(e)]
        if invalid:
            raise ValidationError(f"Invalid email: {', '.join(invalid)}")

        return email_list

    @staticmethod
    def validate_date_range(
        start_date: Union[date, datetime, None],
        end_date: Union[date, datetime, None],
        allow_future: bool = False,
        now: Optional[datetime] = None,
    ) -> bool:
        """Validate a report date range.

        Start must not be after end, and unless ``allow_future`` is set the end
        may not lie beyond today.
        """
        if start_date is None:
            raise ValidationError("Start date is required")
        if end_date is None:
            raise ValidationError("End date is required")

        start = _as_utc(start_date)
        end = _as_utc(end_date)

        if start > end:
            raise ValidationError("Start date must be before end date")

        if not allow_future:
            now = _as_utc(now or datetime.now(timezone.utc))
            if end.date() > now.date():
                raise ValidationError("End date cannot be in the future")

        return True

    @staticmethod
    def validate_required(value: Optional[str], field_name: str) -> bool:
        if not value or not str(value).strip():
            raise ValidationError(f"{field_name} is required")
        return True

    @staticmethod
    def validate_user_identifier(user: str) -> bool:
        """Validate an external user identifier (TestRail id or Jira account id)."""
        if not user:
            raise ValidationError("User identifier cannot be empty")

        # Numeric TestRail ids, Jira Cloud account ids ("557058:f58131cb-...")
        # and legacy usernames/emails
        if not re.match(r"^[a-zA-Z0-9._@:+-]+$", user):
            raise ValidationError(f"Invalid user identifier format: {user}")

        return True

    @staticmethod
    def escape_jql_value(value: str) -> str:
        """Escape a value for use inside a double-quoted JQL string."""
        escaped = value
        for char, replacement in InputValidator.JQL_ESCAPES:
            escaped = escaped.replace(char, replacement)
        return escaped

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        """Strip control characters and normalize unicode in free text."""
        if not text:
            return ""

        text = text.replace("\x00", "")
        text = unicodedata.normalize("NFKC", text)

        # Remove control characters except newlines and tabs
        text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", text)

        return text.strip()

    @staticmethod
    def escape_html(text: str) -> str:
        return html.escape(text or "", quote=False)

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """Sanitize filename for security."""
        if not filename:
            return ""

        filename = re.sub(r'[<>:"/\\|?*]', "", filename)
        filename = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", filename)
        filename = unicodedata.normalize("NFKC", filename)

        return filename[:255].strip()


def _as_utc(value: Union[date, datetime]) -> datetime:
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
