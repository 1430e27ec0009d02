"""
Shared error types for the sync engine.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class RetryLater(RuntimeError):
    """Base for load-shedding rejections that carry a backoff hint."""

    error = "retry_later"

    def __init__(self, message: str, retry_after: int, reason: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.reason = reason

    def payload(self) -> dict:
        return {
            "error": self.error,
            "message": str(self),
            "reason": self.reason,
            "retry_after": self.retry_after,
        }


class SyncBusyError(RetryLater):
    """Raised when another push for the same user holds the mutation lock."""

    error = "sync_in_progress"


class ThrottledError(RetryLater):
    """Raised when the governor sheds a request."""

    error = "server_overloaded"


class NotifierError(RuntimeError):
    """Raised by content notifiers; never propagated to sync callers."""


class ItemRejected(Exception):
    """Per-item push outcome; caught by the reconciler and never crosses the transaction."""

    status = "error"

    def __init__(self, message: str, detail: dict | None = None):
        super().__init__(message)
        self.detail = detail


class ItemForbidden(ItemRejected):
    status = "forbidden"


class ItemNotFound(ItemRejected):
    status = "not_found"
