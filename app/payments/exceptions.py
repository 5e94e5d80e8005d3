"""
Payment-specific exceptions.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Payment entity lookup failures
    ├── PaymentValidationError - Payment validation failures
    └── PaymentProcessingError - Payment processing failures
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Card declined (permanent)
            ├── StripeInsufficientFundsError - Insufficient funds (permanent)
            ├── StripeAuthenticationRequiredError - Customer must authenticate (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient)
            ├── StripeAPIUnavailableError - API unavailable (transient)
            └── StripeTimeoutError - Request timeout (transient)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - Transition not allowed (inherits ConflictError)

Each Stripe error carries failure_code, its place in the charge failure
taxonomy (card_declined, insufficient_funds, authentication_required,
processor_unavailable). is_retryable is about retrying the same request
(same idempotency key), not about scheduling another charge attempt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError
from payments.state_machines.states import ChargeFailureCode

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Example:
        raise PaymentNotFoundError(
            f"PaymentRecord {record_id} not found",
            details={"payment_record_id": str(record_id)},
        )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class PaymentValidationError(PaymentError):
    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class PaymentProcessingError(PaymentError):
    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    http_status: int = 502


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code
        decline_code: Card decline code (if applicable)
        is_retryable: Whether the same request may be retried
        failure_code: Charge failure taxonomy value
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False
    failure_code: str = ChargeFailureCode.PROCESSOR_UNAVAILABLE

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not repeat the request)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    The decline_code attribute contains the specific reason
    (generic_decline, expired_card, lost_card, ...).
    """

    default_error_code: str = "CARD_DECLINED"
    failure_code: str = ChargeFailureCode.CARD_DECLINED


class StripeInsufficientFundsError(StripeError):
    default_error_code: str = "INSUFFICIENT_FUNDS"
    failure_code: str = ChargeFailureCode.INSUFFICIENT_FUNDS


class StripeAuthenticationRequiredError(StripeError):
    """
    The bank requires the customer to authenticate the payment (3DS/SCA).

    An off-session retry can never succeed; the customer has to act.
    """

    default_error_code: str = "AUTHENTICATION_REQUIRED"
    failure_code: str = ChargeFailureCode.AUTHENTICATION_REQUIRED


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Usually a detached or deleted payment method, or a bug on our side.
    Reported to the charge flow as a decline: the same instrument will not
    work on a later attempt either without the customer changing it.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    failure_code: str = ChargeFailureCode.CARD_DECLINED


# -----------------------------------------------------------------------------
# Transient Errors (safe to repeat with the same idempotency key)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues, 5xx responses and an open
    processor circuit.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The operation may have succeeded on Stripe's side. Retrying with the
    same idempotency key returns the original result if it did.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """Raised when a distributed lock cannot be acquired within its timeout."""

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Example:
        raise InvalidStateTransitionError(
            "Cannot cancel a payment record that is processing",
            details={"current_state": "processing", "event": "CancelRequested"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "PaymentProcessingError",
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeAuthenticationRequiredError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
