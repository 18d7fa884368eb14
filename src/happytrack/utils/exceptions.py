"""Custom exceptions for Happy Track."""

from typing import Any, Dict, Optional


class HappyTrackError(Exception):
    """Base exception for Happy Track."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(HappyTrackError):
    """Configuration-related errors."""


class ValidationError(HappyTrackError):
    """Malformed local input such as a bad email address or date range."""


class SecurityError(HappyTrackError):
    """Credential storage and encryption errors."""


class RemoteError(HappyTrackError):
    """A source system answered with a non-2xx status or could not be used."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class AuthenticationError(RemoteError):
    """Credentials rejected (HTTP 401/403)."""


class NetworkError(RemoteError):
    """No response: DNS failure, refused connection or timeout."""


class RateLimitError(RemoteError):
    """API rate limiting errors (HTTP 429)."""


class FileSystemError(HappyTrackError):
    """Export write failures."""


class EmailError(HappyTrackError):
    """SMTP delivery failures."""


_FRIENDLY_MESSAGES = [
    (ValidationError, None),
    (AuthenticationError, "Authentication failed. Please check your credentials."),
    (
        NetworkError,
        "Unable to connect to the service. Please check your internet connection.",
    ),
    (RateLimitError, "The service is busy. Please try again in a few minutes."),
    (RemoteError, "Service is temporarily unavailable. Please try again later."),
    (ConfigurationError, "Configuration is incomplete. Please review your settings."),
    (SecurityError, "Unable to access stored credentials. Please re-enter them."),
    (FileSystemError, "Unable to write the report file. Please check permissions."),
    (EmailError, "Failed to send email. Please check your email configuration."),
]


def get_user_friendly_message(error: BaseException) -> str:
    """Map an error to a message that is safe to show to the user.

    Validation messages are written for the user already and pass through;
    everything else is reduced to a generic message for its category.
    """
    for error_type, message in _FRIENDLY_MESSAGES:
        if isinstance(error, error_type):
            return message if message is not None else str(error)

    return "An unexpected error occurred. Please try again."
