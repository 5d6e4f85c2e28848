"""
Error Taxonomy
Typed, tagged failures raised by the idempotency, retry and prompt services
"""

from typing import Optional


class CallerCoreError(Exception):
    """
    Base class for service errors.

    Every subclass carries a stable `reason` tag so HTTP handlers and callers
    can branch on the failure kind without parsing messages.
    """

    reason = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.reason,
            "message": self.message,
            "details": self.details,
        }


class ValidationFailed(CallerCoreError):
    """Bad or missing input. Never retried."""

    reason = "validation"
    status_code = 400


class AgentNotFound(ValidationFailed):
    """Agent does not exist or belongs to another user."""

    reason = "not_found"
    status_code = 404


class PreviousFailure(CallerCoreError):
    """A matching attempt failed inside the dedup window and retry is disabled."""

    reason = "previous_failure"
    status_code = 409

    def __init__(self, operation: str, key: Optional[str] = None):
        super().__init__(
            f"Operation {operation} previously failed",
            details={"operation": operation, "key": key}
        )
        self.operation = operation
        self.key = key


class OperationFailed(CallerCoreError):
    """The in-flight attempt another caller was waiting on ended in failure."""

    reason = "operation_failed"
    status_code = 502

    def __init__(self, key: str, error_message: Optional[str] = None):
        super().__init__(
            f"Operation failed: {key}",
            details={"key": key, "error": error_message}
        )
        self.key = key


class OperationTimeout(CallerCoreError, TimeoutError):
    """A wait or an execution exceeded its bound."""

    reason = "timeout"
    status_code = 504


class MissingTemplate(CallerCoreError):
    """The agent's configured prompt is absent or has no injectable placeholder."""

    reason = "missing_template"
    status_code = 422
