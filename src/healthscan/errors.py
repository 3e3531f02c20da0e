"""Exceptions raised by the waitlist core.

Each error carries the HTTP status it maps to and a stable ``error_type``
string that the API returns to clients.
"""

from typing import Any


class WaitlistError(Exception):
    """Base waitlist exception."""

    status_code = 500
    error_type = "ServerError"

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorType": self.error_type,
        }
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(WaitlistError):
    """Raised when a signup request carries a missing or malformed email."""

    status_code = 400
    error_type = "InvalidInput"


class RateLimited(WaitlistError):
    """Raised when a client IP exhausted its signup quota."""

    status_code = 429
    error_type = "RateLimited"

    def __init__(self, retry_after_seconds: int, remaining: int = 0):
        super().__init__("Too many signup attempts. Please try again later.")
        self.retry_after_seconds = retry_after_seconds
        self.remaining = remaining

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["retryAfterSeconds"] = self.retry_after_seconds
        return body


class Unauthorized(WaitlistError):
    """Raised when a webhook signature or admin credential does not match."""

    status_code = 401
    error_type = "Unauthorized"


class BadRequest(WaitlistError):
    """Raised when a webhook payload cannot be understood."""

    status_code = 400
    error_type = "BadRequest"


class EntryNotFound(WaitlistError):
    """Raised when an email has no waitlist entry."""

    status_code = 404
    error_type = "EntryNotFound"


class StorageFailure(WaitlistError):
    """Raised when the key-value store cannot complete an operation."""

    status_code = 500
    error_type = "StorageFailure"


class NotificationFailure(WaitlistError):
    """Raised inside background jobs so the dispatcher retries them.

    Never reaches an HTTP caller.
    """

    error_type = "NotificationFailure"
