"""
Celery tasks for recurring payments, early payouts and refunds.

This module provides async tasks for:
- Generating the day's payment records from recurring agreements
- Charging due payment records (first attempts and scheduled retries)
- Returning payment records abandoned by crashed workers
- Settling requested early payouts
- Paying out refund requests

Periodic tasks are scheduled with django-celery-beat (see the
payments data migration that installs the schedules).

Usage:
    from payments.tasks import process_payment_record

    process_payment_record.delay(str(record.id))
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from payments.exceptions import StripeAPIUnavailableError, StripeRateLimitError, StripeTimeoutError

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_REFUND_RETRIES = 5

TRANSIENT_STRIPE_ERRORS = (
    StripeRateLimitError,
    StripeAPIUnavailableError,
    StripeTimeoutError,
)


# =============================================================================
# Recurring Payment Tasks
# =============================================================================


@shared_task
def generate_due_payment_records() -> dict:
    """
    Daily task creating payment records for agreements due today.

    Returns:
        Dict with count of records created
    """
    from payments.services.recurring_billing import RecurringBillingService

    created = RecurringBillingService.create_due_payment_records(timezone.localdate())
    return {"created": created}


@shared_task
def process_due_payment_records(limit: int | None = None) -> dict:
    """
    Periodic task charging every due payment record.

    Charges run inline in this task. A record that a concurrent worker
    claims first is skipped.

    Returns:
        Dict with counts by outcome
    """
    from payments.services.reconciliation_service import ReconciliationService

    summary = ReconciliationService.process_due_records(timezone.now(), limit=limit)
    return summary.to_dict()


@shared_task(acks_late=True)
def process_payment_record(payment_record_id: str) -> dict:
    """
    Charge a single payment record.

    Not retried by Celery: a failed charge is retried by the record's own
    backoff schedule, and a crash leaves the record for
    release_stale_payment_claims.

    Args:
        payment_record_id: UUID of the PaymentRecord to charge

    Returns:
        Dict with the record's resulting status
    """
    from payments.exceptions import PaymentNotFoundError
    from payments.services.reconciliation_service import ReconciliationService

    try:
        result = ReconciliationService.process_payment_record(payment_record_id)
    except PaymentNotFoundError:
        logger.error(
            "PaymentRecord not found",
            extra={"payment_record_id": payment_record_id},
        )
        return {"status": "not_found", "payment_record_id": payment_record_id}

    if not result.success:
        return {
            "status": "skipped",
            "payment_record_id": payment_record_id,
            "error_code": result.error_code,
        }

    return {
        "status": result.data.status,
        "payment_record_id": payment_record_id,
        "retry_count": result.data.retry_count,
    }


@shared_task
def release_stale_payment_claims() -> dict:
    """
    Periodic task returning records stuck in processing to pending.

    Returns:
        Dict with count of records released
    """
    from payments.services.reconciliation_service import ReconciliationService

    released = ReconciliationService.release_stale_claims(timezone.now())
    if released:
        logger.warning("Released stale payment claims", extra={"released": released})
    return {"released": released}


# =============================================================================
# Escrow & Refund Tasks
# =============================================================================


@shared_task(acks_late=True)
def settle_early_payout(payout_schedule_id: str) -> dict:
    """
    Release a requested early payout into the provider's wallet.

    A rejection (dispute, wrong state) is a normal result, not an error.
    Lock contention is reported as a failure result and not retried; the
    holder of the lock settles the payout.

    Returns:
        Dict with the settlement outcome
    """
    from payments.services.escrow_settlement import EscrowSettlementService

    result = EscrowSettlementService.release_early(payout_schedule_id)

    if result.success:
        return {
            "status": "released",
            "payout_schedule_id": payout_schedule_id,
            "payout_amount_cents": result.data.payout_amount_cents,
        }

    logger.info(
        "Early payout not released",
        extra={"payout_schedule_id": payout_schedule_id, "error_code": result.error_code},
    )
    return {
        "status": "rejected",
        "payout_schedule_id": payout_schedule_id,
        "error_code": result.error_code,
        "error": result.error,
    }


@shared_task(
    bind=True,
    autoretry_for=TRANSIENT_STRIPE_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_REFUND_RETRIES},
    acks_late=True,
)
def process_refund_request(self, refund_request_id: str) -> dict:
    """
    Pay out a refund request through Stripe.

    Transient Stripe errors propagate and Celery retries with backoff; the
    request stays in processing and the retry reuses its idempotency key.

    Returns:
        Dict with the refund outcome
    """
    from payments.services.refund_service import RefundService

    result = RefundService.process_refund_request(refund_request_id)

    if result.success:
        return {
            "status": result.data.status,
            "refund_request_id": refund_request_id,
            "stripe_refund_id": result.data.stripe_refund_id,
        }

    return {
        "status": "failed",
        "refund_request_id": refund_request_id,
        "error_code": result.error_code,
        "error": result.error,
    }
