"""Timestamp helpers shared by the source adapters and the report pipeline."""

import re
from datetime import date, datetime, time, timezone
from typing import Union

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def ensure_aware(value: datetime) -> datetime:
    """Return ``value`` as an aware datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def from_unix_timestamp(seconds: Union[int, float, str]) -> datetime:
    """Convert a TestRail ``created_on`` value (epoch seconds) to UTC."""
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    """Parse a Jira timestamp such as ``2024-01-15T10:00:00.000+0000`` into UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    return to_utc(datetime.fromisoformat(text))


def format_day(value: Union[date, datetime]) -> str:
    return value.strftime("%Y-%m-%d")


def format_date_range(start: Union[date, datetime], end: Union[date, datetime]) -> str:
    return f"{format_day(start)} to {format_day(end)}"


def start_of_day(day: date, tz: timezone = timezone.utc) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: timezone = timezone.utc) -> datetime:
    """Final representable moment of ``day``; report windows are inclusive."""
    return datetime.combine(day, time.max, tzinfo=tz)
