"""Logging setup for Happy Track.

Everything that reaches a handler passes through :class:`LogSanitizer`, so
TestRail API keys, Jira API tokens, SMTP passwords and the Basic auth header
built from them never land in the console or the log file.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Any, List, Optional, Pattern, Tuple

import structlog

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"

QUIET_LOGGERS = ("aiohttp", "keyring", "smtplib")

_SECRET_KEYS = r"password|passwd|api_?key|api_?token|secret|master_key|authorization"


class LogSanitizer:
    """Redact credentials and personal data from log output."""

    RULES: List[Tuple[Pattern[str], str]] = [
        # Header schemes first so "Authorization: Basic <creds>" loses the creds
        (re.compile(r"\b(bearer|basic)\s+[a-z0-9+/=._-]{8,}", re.I), r"\1 [REDACTED]"),
        (
            re.compile(rf"\b({_SECRET_KEYS})([\"']?\s*[:=]\s*[\"']?)[^\"'\s,}}]+", re.I),
            r"\1\2[REDACTED]",
        ),
        (re.compile(r"ATATT[0-9A-Za-z_\-=]{20,}"), "[ATLASSIAN_TOKEN_REDACTED]"),
        # Addresses keep their domain
        (re.compile(r"[a-z0-9._%+-]+@([a-z0-9.-]+\.[a-z]{2,})", re.I), r"***@\1"),
    ]

    @classmethod
    def sanitize_message(cls, message: str) -> str:
        if not message:
            return message

        for pattern, replacement in cls.RULES:
            message = pattern.sub(replacement, message)
        return message

    @classmethod
    def sanitize_value(cls, value: Any) -> Any:
        """Sanitize strings, recursing into dicts, lists and tuples."""
        if isinstance(value, str):
            return cls.sanitize_message(value)
        if isinstance(value, dict):
            return {key: cls.sanitize_value(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(cls.sanitize_value(item) for item in value)
        return value


class SecureFormatter(logging.Formatter):
    """Formatter that sanitizes the message and its arguments."""

    def format(self, record: logging.LogRecord) -> str:
        record.msg = LogSanitizer.sanitize_message(str(record.msg))
        if record.args:
            record.args = LogSanitizer.sanitize_value(record.args)
        return super().format(record)


def _sanitize_event_dict(_: Any, __: str, event_dict: dict) -> dict:
    return LogSanitizer.sanitize_value(event_dict)


def _configure_structlog(sanitize: bool) -> None:
    processors: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if sanitize:
        processors.append(_sanitize_event_dict)
    processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True,
    enable_structured: bool = True,
    sanitize: bool = True,
) -> None:
    """Configure the root logger, and structlog for the audit trail.

    Args:
        level: Root log level name
        log_file: Optional log file; its directory is created if missing
        enable_console: Log to stderr
        enable_structured: Render audit events as JSON through structlog
        sanitize: Redact credentials from every record
    """
    root = logging.getLogger()
    root.handlers.clear()
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter_class = SecureFormatter if sanitize else logging.Formatter

    if enable_structured:
        _configure_structlog(sanitize)

    handlers: List[Tuple[logging.Handler, str]] = []
    if enable_console:
        handlers.append((logging.StreamHandler(sys.stderr), CONSOLE_FORMAT))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append((logging.FileHandler(log_path, encoding="utf-8"), FILE_FORMAT))

    for handler, fmt in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter_class(fmt))
        root.addHandler(handler)

    root.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class SecurityLogger:
    """Audit trail for credential handling and source system traffic."""

    def __init__(self, name: str = "happytrack.audit") -> None:
        self.logger = structlog.get_logger(name)

    def log_security_event(
        self, event_type: str, severity: str = "INFO", **kwargs: Any
    ) -> None:
        log_method = getattr(self.logger, severity.lower(), self.logger.info)
        log_method(
            "security_event",
            event_type=event_type,
            **LogSanitizer.sanitize_value(kwargs),
        )

    def log_authentication_attempt(
        self, service: str, username: Optional[str] = None, success: bool = False, **kwargs: Any
    ) -> None:
        self.log_security_event(
            "authentication_attempt",
            severity="INFO" if success else "WARNING",
            service=service,
            username=username,
            success=success,
            **kwargs,
        )

    def log_api_request(
        self, service: str, endpoint: str, method: str = "GET", **kwargs: Any
    ) -> None:
        self.log_security_event(
            "api_request", severity="DEBUG", service=service, endpoint=endpoint, method=method, **kwargs
        )

    def log_configuration_change(self, component: str, change_type: str, **kwargs: Any) -> None:
        self.log_security_event(
            "configuration_change", component=component, change_type=change_type, **kwargs
        )

    def log_error(self, error_type: str, error_message: str, **kwargs: Any) -> None:
        self.log_security_event(
            "error_occurred",
            severity="ERROR",
            error_type=error_type,
            error_message=error_message,
            **kwargs,
        )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_security_logger() -> SecurityLogger:
    return SecurityLogger()
