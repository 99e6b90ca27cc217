"""
Lapor Core - Error Taxonomy

Every failure the core surfaces is one of these classes.

- ValidationError: malformed input, tied to one field
- InvalidTransition: status change not permitted from the current state
- NotFound: report / department / assignee missing
- Conflict: duplicate upvote, self-upvote, concurrent modification
- InvalidTrackingToken: anonymous lookup without the right token
- DependencyUnavailable: store or broker unreachable or timed out (retryable)
- Internal: anything unexpected

Expected errors are surfaced verbatim and never retried automatically.
"""
from typing import Any, Dict, Optional


class LaporError(Exception):
    """Base exception for all core errors."""

    code: str = "INTERNAL_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error for API responses and logs."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(LaporError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}", {"field": field})
        self.field = field


class InvalidTransition(LaporError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, allowed: list) -> None:
        super().__init__(
            f"Cannot transition from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status, "allowed": allowed},
        )
        self.from_status = from_status
        self.to_status = to_status


class NotFound(LaporError):
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Report", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"{resource} not found", details)


class InvalidTrackingToken(NotFound):
    """
    Raised for a missing or wrong tracking token.

    Subclasses NotFound and carries the same message so a caller holding
    the wrong token cannot tell an existing report from a missing one.
    """

    def __init__(self) -> None:
        super().__init__("Report")


class Conflict(LaporError):
    code = "CONFLICT"


class DependencyUnavailable(LaporError):
    code = "DEPENDENCY_UNAVAILABLE"
    retryable = True


class Internal(LaporError):
    code = "INTERNAL_ERROR"
