"""Error taxonomy and classification for task workflow operations."""

from collections.abc import Awaitable
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from sitetrack.core.config import Constants


T = TypeVar("T")


class SiteTrackError(Exception):
    """Base class for errors raised by the core."""


class ValidationError(SiteTrackError):
    """Missing or malformed input. Caller error, never retried."""


class NotFoundError(SiteTrackError):
    """A project, unit, task or related record does not exist."""


class TaskNotFoundError(NotFoundError):
    """The task id was not found in any unit of the project."""


class AuthorizationDenied(SiteTrackError):
    """The actor is outside the visibility or role policy for this operation."""


class ConcurrencyConflict(SiteTrackError):
    """A lost update was detected. The caller should reload and retry."""


class PersistenceUnavailable(SiteTrackError):
    """The document store failed. The caller should retry with backoff."""


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    ERR_CONCURRENCY_CONFLICT = "ERR_CONCURRENCY_CONFLICT"
    ERR_PERSISTENCE_UNAVAILABLE = "ERR_PERSISTENCE_UNAVAILABLE"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    http_status: int


class OperationResult(BaseModel, Generic[T]):
    """Tagged success/failure result of a core operation."""

    ok: bool
    value: T | None = None
    error: ErrorResponse | None = None


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, severity and HTTP status
    """
    detail = str(exception)

    if isinstance(exception, ValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=detail or "The request is missing required fields or contains invalid values.",
            suggestion="Correct the request and send it again.",
            severity=ErrorSeverity.LOW,
            http_status=Constants.HTTP_BAD_REQUEST,
        )

    if isinstance(exception, TaskNotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message=detail or "Task not found in any unit.",
            suggestion="Refresh the task list and pick an existing task.",
            severity=ErrorSeverity.LOW,
            http_status=Constants.HTTP_NOT_FOUND,
        )

    if isinstance(exception, NotFoundError):
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message=detail or "The requested record was not found.",
            suggestion="Check the identifier and try again.",
            severity=ErrorSeverity.LOW,
            http_status=Constants.HTTP_NOT_FOUND,
        )

    if isinstance(exception, AuthorizationDenied):
        return ErrorResponse(
            code=ErrorCode.ERR_PERMISSION_DENIED,
            message=detail or "You don't have permission for this action.",
            suggestion="Contact your project admin if you think this is an error.",
            severity=ErrorSeverity.MEDIUM,
            http_status=Constants.HTTP_FORBIDDEN,
        )

    if isinstance(exception, ConcurrencyConflict):
        return ErrorResponse(
            code=ErrorCode.ERR_CONCURRENCY_CONFLICT,
            message=detail or "The project was changed by someone else.",
            suggestion="Reload the project and retry the update.",
            severity=ErrorSeverity.MEDIUM,
            http_status=Constants.HTTP_CONFLICT,
        )

    if isinstance(exception, PersistenceUnavailable):
        return ErrorResponse(
            code=ErrorCode.ERR_PERSISTENCE_UNAVAILABLE,
            message="Storage is temporarily unavailable.",
            suggestion="Retry with backoff. If the problem persists, contact support.",
            severity=ErrorSeverity.HIGH,
            http_status=Constants.HTTP_SERVICE_UNAVAILABLE,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.CRITICAL,
        http_status=Constants.HTTP_SERVER_ERROR,
    )


async def capture_result(operation: Awaitable[Any]) -> OperationResult[Any]:
    """Await an operation and wrap its outcome in an OperationResult.

    Only SiteTrackError subclasses are captured. Anything else propagates so
    unexpected failures stay visible to the transport layer.
    """
    try:
        value = await operation
    except SiteTrackError as e:
        return OperationResult(ok=False, error=classify_error_with_response(e))
    return OperationResult(ok=True, value=value)
