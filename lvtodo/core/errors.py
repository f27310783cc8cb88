"""Domain error taxonomy and classification into user-facing responses."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Lookup / authorization
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_FORBIDDEN = "ERR_FORBIDDEN"

    # Lifecycle
    ERR_INVALID_TRANSITION = "ERR_INVALID_TRANSITION"

    # Groups and wishes
    ERR_ALREADY_MEMBER = "ERR_ALREADY_MEMBER"
    ERR_DUPLICATE_VOTE = "ERR_DUPLICATE_VOTE"
    ERR_INSUFFICIENT_FUNDS = "ERR_INSUFFICIENT_FUNDS"

    # Input
    ERR_VALIDATION = "ERR_VALIDATION"

    # Infrastructure
    ERR_RATE_LIMIT_EXCEEDED = "ERR_RATE_LIMIT_EXCEEDED"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"
    ERR_DATABASE = "ERR_DATABASE"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class LvTodoError(Exception):
    """Base class for errors raised synchronously by engine operations."""

    code: str = ErrorCode.ERR_UNKNOWN


class NotFoundError(LvTodoError, LookupError):
    """Task, wish, group, user, or invite code does not exist."""

    code = ErrorCode.ERR_NOT_FOUND


class ForbiddenError(LvTodoError, PermissionError):
    """Actor is not allowed to perform the operation."""

    code = ErrorCode.ERR_FORBIDDEN


class InvalidTransitionError(LvTodoError, ValueError):
    """Operation is not valid from the entity's current status."""

    code = ErrorCode.ERR_INVALID_TRANSITION


class AlreadyMemberError(LvTodoError, ValueError):
    code = ErrorCode.ERR_ALREADY_MEMBER


class DuplicateVoteError(LvTodoError, ValueError):
    code = ErrorCode.ERR_DUPLICATE_VOTE


class InsufficientFundsError(LvTodoError, ValueError):
    code = ErrorCode.ERR_INSUFFICIENT_FUNDS


class InputValidationError(LvTodoError, ValueError):
    """Caller supplied an invalid value (past deadline, non-positive cost, ...)."""

    code = ErrorCode.ERR_VALIDATION


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity


_ERROR_PATTERNS: dict[
    Literal["rate_limit", "network", "database"],
    dict[str, list[str] | set[str]],
] = {
    "rate_limit": {
        "phrases": [
            "rate limit",
            "too many requests",
            "throttled",
        ],
        "exception_types": set(),
    },
    "network": {
        "phrases": [
            "connection",
            "timeout",
            "network",
            "503",
            "502",
            "504",
            "unreachable",
        ],
        "exception_types": {"ConnectionError", "TimeoutError", "ConnectError"},
    },
    "database": {
        "phrases": ["database is locked", "no such table", "disk i/o error"],
        "exception_types": {"DatabaseError", "OperationalError"},
    },
}


def _match_error_pattern(
    *,
    error_str: str,
    exception_type: str,
    pattern_type: Literal["rate_limit", "network", "database"],
) -> bool:
    """Return True if the error matches the configured pattern type."""
    patterns = _ERROR_PATTERNS[pattern_type]
    return any(phrase in error_str for phrase in patterns["phrases"]) or exception_type in patterns["exception_types"]


_DOMAIN_RESPONSES: dict[str, tuple[str, ErrorSeverity]] = {
    ErrorCode.ERR_NOT_FOUND: ("Check the id or invite code and try again.", ErrorSeverity.LOW),
    ErrorCode.ERR_FORBIDDEN: ("Only the assigner, assignee, or wish creator can do this.", ErrorSeverity.MEDIUM),
    ErrorCode.ERR_INVALID_TRANSITION: ("Reload to see the current status before retrying.", ErrorSeverity.LOW),
    ErrorCode.ERR_ALREADY_MEMBER: ("You are already in this group.", ErrorSeverity.LOW),
    ErrorCode.ERR_DUPLICATE_VOTE: ("Each member can approve a wish once.", ErrorSeverity.LOW),
    ErrorCode.ERR_INSUFFICIENT_FUNDS: ("Complete more tasks to earn enough points.", ErrorSeverity.LOW),
    ErrorCode.ERR_VALIDATION: ("Fix the highlighted value and submit again.", ErrorSeverity.LOW),
}


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Domain errors map directly through their code; anything else is matched
    against infrastructure failure patterns.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, and severity
    """
    if isinstance(exception, LvTodoError):
        suggestion, severity = _DOMAIN_RESPONSES.get(
            exception.code, ("Please try again later.", ErrorSeverity.MEDIUM)
        )
        return ErrorResponse(
            code=exception.code,
            message=str(exception) or exception.__class__.__name__,
            suggestion=suggestion,
            severity=severity,
        )

    error_str = str(exception).lower()
    exception_type = type(exception).__name__

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="rate_limit"):
        return ErrorResponse(
            code=ErrorCode.ERR_RATE_LIMIT_EXCEEDED,
            message="Too many requests.",
            suggestion="Please wait a moment and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="database"):
        return ErrorResponse(
            code=ErrorCode.ERR_DATABASE,
            message="The task store is temporarily unavailable.",
            suggestion="Please try again in a few seconds.",
            severity=ErrorSeverity.HIGH,
        )

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="network"):
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please check your connection and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
