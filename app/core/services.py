"""
Base service layer patterns for business logic encapsulation.

This module provides:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with logging and transaction helpers

Pattern Comparison:
    - ServiceResult: Use for expected failures (business rules, bad state)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class RefundService(BaseService):
        @classmethod
        def cancel_refund_request(cls, refund_id, user) -> ServiceResult[RefundRequest]:
            refund = RefundRequest.objects.filter(id=refund_id).first()
            if refund is None:
                return ServiceResult.failure("Refund not found", "REFUND_NOT_FOUND")

            with cls.atomic():
                refund.cancel()
                refund.save()

            cls.get_logger().info("Refund cancelled", extra={"refund_id": str(refund.id)})
            return ServiceResult.success(refund)

    # In a view
    result = RefundService.cancel_refund_request(refund_id, request.user)
    if result.success:
        return Response(RefundRequestSerializer(result.data).data)
    return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        return ServiceResult.success(payout)
        return ServiceResult.failure("active disputes exist", "ACTIVE_DISPUTES")

        result = EscrowSettlementService.release_early(schedule_id)
        if not result:
            logger.info(result.error)
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own error code.
        """
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=error_code
            or getattr(exc, "error_code", None)
            or exc.__class__.__name__.upper(),
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get a logger named after the service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around django.db.transaction.atomic() that makes
        transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Example:
            try:
                adapter.create_refund(...)
            except StripeCardDeclinedError as e:
                return cls.handle_exception(e, "refund processing")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)
        return ServiceResult.from_exception(exc)
