"""
Payment adapters for external services.

All external payment API calls should go through these adapters to ensure
consistent error handling, timeouts, idempotency, and observability.

Usage:
    from payments.adapters import ChargeRequest, StripeAdapter

    result = StripeAdapter.charge(
        ChargeRequest(
            payment_method_id='pm_xxx',
            amount_cents=5000,
            currency='usd',
            idempotency_key='recurring_charge:record_123:1:a1b2c3d4',
        )
    )
"""

from payments.adapters.stripe_adapter import (
    ChargeRequest,
    ChargeResult,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PaymentProcessor,
    RefundResult,
    StripeAdapter,
    backoff_delay,
    get_processor_circuit,
    is_retryable_stripe_error,
)

__all__ = [
    "ChargeRequest",
    "ChargeResult",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PaymentProcessor",
    "RefundResult",
    "StripeAdapter",
    "backoff_delay",
    "get_processor_circuit",
    "is_retryable_stripe_error",
]
