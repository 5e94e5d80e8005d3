"""
Application-wide exception hierarchy.

Every domain error carries a human-readable message, a machine-readable
error code and optional details, so API views can turn any of them into
the same JSON error body.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input or business rule violations
    ├── NotFoundError - Missing resource
    ├── PermissionDeniedError - Caller may not act on the resource
    ├── ConflictError - Resource is in the wrong state
    └── ExternalServiceError - Payment processor or other third party failed

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Cannot cancel a payment that is being processed",
        error_code="INVALID_STATE_TRANSITION",
        details={"current_status": "processing"},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context
        http_status: Status code API views respond with
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Payment record not found",
                "error_code": "PAYMENT_NOT_FOUND",
                "details": {"record_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Raised when input or a business rule check fails."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller may not act on a resource.

    Example:
        if refund.requested_by_id != user.id:
            raise PermissionDeniedError(
                "Only the requester can cancel this refund",
                error_code="NOT_REFUND_REQUESTER",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current resource state.

    Covers invalid state transitions, duplicate entries and lost
    optimistic-locking races. HTTP 409 is the matching status.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose internal
    details to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
