"""
Stripe API adapter for payment operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Configurable timeouts on all API calls
- Network-level retries by the Stripe SDK, reusing the idempotency key
- Automatic error translation to domain exceptions and the charge
  failure taxonomy
- Circuit breaker shared by all workers through the cache
- Structured logging with timing metrics

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries per call (default: 3)
- PROCESSOR_CIRCUIT_FAILURE_THRESHOLD / PROCESSOR_CIRCUIT_RECOVERY_TIMEOUT

Usage:
    from payments.adapters import ChargeRequest, IdempotencyKeyGenerator, StripeAdapter

    result = StripeAdapter.charge(
        ChargeRequest(
            payment_method_id=record.payment_method_id,
            customer_id=agreement.stripe_customer_id,
            amount_cents=record.amount_cents,
            currency=record.currency,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "recurring_charge", record.id, record.attempt_count
            ),
        )
    )
    if result.is_success:
        ...
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import stripe
from django.conf import settings

from core.circuit_breaker import CircuitBreaker
from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeAuthenticationRequiredError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)
from payments.state_machines import ChargeFailureCode

AUTHENTICATION_REQUIRED_MESSAGE = (
    "Your bank requires you to verify this payment before it can be completed."
)

PROCESSOR_UNAVAILABLE_MESSAGE = (
    "The payment processor is temporarily unavailable. The payment will be retried."
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeRequest:
    """
    Parameters for charging a saved payment method off-session.

    Attributes:
        payment_method_id: Stripe PaymentMethod ID (pm_xxx)
        amount_cents: Charge amount in smallest currency unit
        currency: ISO 4217 currency code
        idempotency_key: Stable key for this business attempt
        customer_id: Stripe Customer ID owning the payment method
        metadata: Key-value pairs to attach to the PaymentIntent
        description: Statement description shown in the Stripe dashboard
    """

    payment_method_id: str
    amount_cents: int
    currency: str
    idempotency_key: str
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    description: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.payment_method_id:
            raise ValueError("payment_method_id is required")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass(frozen=True)
class ChargeResult:
    """
    Outcome of a charge: succeeded with a reference, or failed with a code.

    failure_code is one of ChargeFailureCode's values.
    """

    status: str
    external_reference: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None

    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @classmethod
    def succeeded(cls, external_reference: str) -> ChargeResult:
        return cls(status=cls.SUCCEEDED, external_reference=external_reference)

    @classmethod
    def failed(cls, failure_code: str, failure_reason: str) -> ChargeResult:
        return cls(status=cls.FAILED, failure_code=failure_code, failure_reason=failure_reason)

    @property
    def is_success(self) -> bool:
        return self.status == self.SUCCEEDED


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent lookups.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount_cents: Amount in cents
        currency: Currency code
        amount_received_cents: Amount actually captured
        metadata: Attached metadata
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    amount_received_cents: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.status == "succeeded" and self.amount_received_cents > 0


class PaymentProcessor(Protocol):
    """What the reconciliation service needs from a card processor."""

    def charge(self, request: ChargeRequest) -> ChargeResult: ...


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    repeated network call for one attempt is deduplicated by Stripe while
    a new attempt gets a new key.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation='recurring_charge',
            entity_id=record.id,
            attempt=record.attempt_count,
        )
        # Result: "recurring_charge:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error may be retried with the same idempotency key.

    Use this in Celery tasks to decide whether to retry:

        try:
            StripeAdapter.create_refund(...)
        except StripeError as e:
            if is_retryable_stripe_error(e):
                raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
            raise
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff delay in seconds with 0-25% jitter.

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def get_processor_circuit() -> CircuitBreaker:
    """Circuit breaker guarding Stripe. State is shared through the cache."""
    return CircuitBreaker(
        "stripe",
        failure_threshold=settings.PROCESSOR_CIRCUIT_FAILURE_THRESHOLD,
        recovery_timeout=settings.PROCESSOR_CIRCUIT_RECOVERY_TIMEOUT,
    )


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    charge() never raises for processor outcomes; it returns a
    ChargeResult. create_refund() raises the typed Stripe exceptions so
    Celery can retry transient failures.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key, timeout and network retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Core Operations
    # =========================================================================

    @classmethod
    def charge(cls, request: ChargeRequest, trace_id: str | None = None) -> ChargeResult:
        """
        Charge a saved payment method off-session.

        Creates and confirms a PaymentIntent in one call. An intent that
        ends in requires_action needs the customer to authenticate and is
        reported as authentication_required.

        Returns:
            ChargeResult.succeeded with the PaymentIntent ID, or
            ChargeResult.failed with a ChargeFailureCode
        """
        logger = cls.get_logger()
        circuit = get_processor_circuit()

        log_context = {
            "operation": "charge",
            "amount_cents": request.amount_cents,
            "currency": request.currency,
            "idempotency_key": request.idempotency_key,
            "trace_id": trace_id,
        }

        if not circuit.is_available():
            logger.warning("Stripe circuit open, skipping charge", extra=log_context)
            return ChargeResult.failed(
                ChargeFailureCode.PROCESSOR_UNAVAILABLE,
                PROCESSOR_UNAVAILABLE_MESSAGE,
            )

        cls._configure_stripe()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=request.amount_cents,
                currency=request.currency,
                customer=request.customer_id or None,
                payment_method=request.payment_method_id,
                off_session=True,
                confirm=True,
                metadata=request.metadata,
                description=request.description,
                idempotency_key=request.idempotency_key,
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            try:
                cls._handle_stripe_error(e, log_context, duration_ms)
            except StripeError as error:
                cls._record_outcome(circuit, error.failure_code)
                return ChargeResult.failed(error.failure_code, error.message)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": duration_ms,
            },
        )
        circuit.record_success()

        if intent.status == "succeeded":
            return ChargeResult.succeeded(intent.id)

        if intent.status == "requires_action":
            return ChargeResult.failed(
                ChargeFailureCode.AUTHENTICATION_REQUIRED,
                AUTHENTICATION_REQUIRED_MESSAGE,
            )

        return ChargeResult.failed(
            ChargeFailureCode.CARD_DECLINED,
            f"Payment was not completed (status: {intent.status})",
        )

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        trace_id: str | None = None,
    ) -> RefundResult:
        """
        Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent refund
            amount_cents: Amount to refund (None for full refund)
            reason: Refund reason (duplicate, fraudulent, requested_by_customer)
            metadata: Optional metadata dict
            trace_id: Optional trace ID for distributed tracing

        Raises:
            StripeInvalidRequestError: Refund not possible
            StripeAPIUnavailableError: Stripe unavailable or circuit open
            StripeTimeoutError: Request timed out
        """
        logger = cls.get_logger()
        circuit = get_processor_circuit()

        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
            "trace_id": trace_id,
        }

        if not circuit.is_available():
            raise StripeAPIUnavailableError(
                PROCESSOR_UNAVAILABLE_MESSAGE,
                stripe_code="circuit_open",
            )

        cls._configure_stripe()
        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund_params: dict[str, Any] = {
                "payment_intent": payment_intent_id,
                "metadata": metadata or {},
            }
            if amount_cents is not None:
                refund_params["amount"] = amount_cents
            if reason:
                refund_params["reason"] = reason

            refund = stripe.Refund.create(
                idempotency_key=idempotency_key,
                **refund_params,
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            try:
                cls._handle_stripe_error(e, log_context, duration_ms)
            except StripeError as error:
                cls._record_outcome(circuit, error.failure_code)
                raise
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": duration_ms,
            },
        )
        circuit.record_success()

        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict(),
        )

    @classmethod
    def retrieve_payment_intent(
        cls,
        payment_intent_id: str,
        trace_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Used to confirm a booking was actually paid before its funds are
        held in escrow.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
            StripeAPIUnavailableError: Stripe unavailable or circuit open
        """
        logger = cls.get_logger()
        circuit = get_processor_circuit()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
            "trace_id": trace_id,
        }

        if not circuit.is_available():
            raise StripeAPIUnavailableError(
                PROCESSOR_UNAVAILABLE_MESSAGE,
                stripe_code="circuit_open",
            )

        cls._configure_stripe()
        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            try:
                cls._handle_stripe_error(e, log_context, duration_ms)
            except StripeError as error:
                cls._record_outcome(circuit, error.failure_code)
                raise
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Stripe operation completed",
            extra={**log_context, "status": intent.status, "duration_ms": duration_ms},
        )
        circuit.record_success()

        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            amount_received_cents=intent.amount_received or 0,
            metadata=dict(intent.metadata or {}),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @staticmethod
    def _record_outcome(circuit: CircuitBreaker, failure_code: str) -> None:
        # A decline is a healthy processor saying no
        if failure_code == ChargeFailureCode.PROCESSOR_UNAVAILABLE:
            circuit.record_failure()
        else:
            circuit.record_success()

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeAuthenticationRequiredError: Customer must authenticate
            StripeInsufficientFundsError: Insufficient funds
            StripeCardDeclinedError: Card was declined
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "stripe_code": error.code, "decline_code": decline_code},
            )

            if "authentication_required" in (error.code, decline_code):
                raise StripeAuthenticationRequiredError(
                    AUTHENTICATION_REQUIRED_MESSAGE,
                    stripe_code=error.code,
                    decline_code=decline_code,
                )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                )

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            # Detached or deleted payment method, or bad parameters
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error.user_message or error),
                stripe_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                raise StripeTimeoutError(
                    "Stripe did not respond in time. Please retry.",
                    stripe_code="timeout",
                )
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            # Invalid API key - operational issue, nothing the customer can fix
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeAPIUnavailableError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            )
