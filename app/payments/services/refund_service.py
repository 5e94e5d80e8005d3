"""
Refund service for booking cancellations.

This module provides the RefundService class which handles the path from
"I want to cancel" to money back on the customer's card:

1. check_eligibility: quote the refund under the cancellation policy
2. submit_refund_request: store the quote and cancel the booking
3. process_refund_request: pay the quote out through Stripe

Processing follows a three-phase pattern so a Stripe call is never made
inside a database transaction:

    Phase 1 (atomic): verify the quote, move the request to PROCESSING
    Phase 2:          Stripe refund with an idempotency key per request
    Phase 3 (atomic): ledger entries, escrow hold refunded, request COMPLETED

A transient Stripe error leaves the request in PROCESSING and re-raises so
the Celery task retries; the retry skips Phase 1 and reuses the same
idempotency key.

Usage:
    from payments.services.refund_service import RefundService

    eligibility = RefundService.check_eligibility(booking, CancellingParty.CUSTOMER)
    if eligibility.eligible:
        result = RefundService.submit_refund_request(booking, request.user, reason="Sick")
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from bookings.models import Booking, BookingStatus, EscrowStatus
from core.exceptions import PermissionDeniedError
from core.services import BaseService, ServiceResult
from notifications.models import NotificationType
from notifications.services import NotificationService
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import StripeError
from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import LedgerService
from payments.ledger.types import RecordEntryParams
from payments.models import EscrowHold, RefundRequest
from payments.services.refund_eligibility import RefundEligibility, evaluate_refund_eligibility
from payments.state_machines import CancellingParty, EscrowHoldStatus, RefundRequestStatus

if TYPE_CHECKING:
    from datetime import datetime


# Requests in these states block a new request for the same booking
LIVE_REFUND_STATUSES = (
    RefundRequestStatus.PENDING,
    RefundRequestStatus.PROCESSING,
    RefundRequestStatus.COMPLETED,
)

ESCROW_NOT_HELD_MESSAGE = "Booking funds are not held in escrow"


def _ineligible(booking: Booking, days: int, policy_text: str, reason: str) -> RefundEligibility:
    return RefundEligibility(
        eligible=False,
        refund_percentage=0,
        refund_amount_cents=0,
        original_amount_cents=booking.price_cents,
        days_until_service=days,
        policy_text=policy_text,
        reason=reason,
    )


class RefundService(BaseService):
    """
    Service for booking refunds.

    Error Handling:
        - Ineligible or invalid requests: ServiceResult.failure
        - Requester is not a party to the booking: PermissionDeniedError
        - Transient Stripe errors: re-raised for Celery retry
        - Permanent Stripe errors: request marked FAILED
    """

    # =========================================================================
    # Eligibility
    # =========================================================================

    @classmethod
    def check_eligibility(
        cls,
        booking: Booking,
        cancelling_party: str,
        now: datetime | None = None,
    ) -> RefundEligibility:
        """Quote the refund for cancelling this booking now."""
        now = now or timezone.now()
        quote = evaluate_refund_eligibility(
            scheduled_date=booking.scheduled_date,
            cancelling_party=cancelling_party,
            original_amount_cents=booking.price_cents,
            now=now,
            scheduled_time=booking.scheduled_time,
        )

        if booking.status == BookingStatus.COMPLETED:
            return _ineligible(
                booking,
                quote.days_until_service,
                "Completed bookings cannot be refunded",
                "Booking already completed",
            )

        if booking.status == BookingStatus.CANCELLED:
            return _ineligible(
                booking,
                quote.days_until_service,
                "Booking already cancelled",
                "Booking already cancelled",
            )

        existing = (
            RefundRequest.objects.filter(booking=booking, status__in=LIVE_REFUND_STATUSES)
            .order_by("-created_at")
            .first()
        )
        if existing is not None:
            return _ineligible(
                booking,
                quote.days_until_service,
                "Refund already requested",
                f"Refund already {existing.status}",
            )

        return quote

    # =========================================================================
    # Requests
    # =========================================================================

    @classmethod
    def submit_refund_request(
        cls,
        booking: Booking,
        requested_by,
        reason: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[RefundRequest]:
        """
        Cancel a booking and request the refund the policy allows.

        The request is queued for processing once the transaction commits.

        Raises:
            PermissionDeniedError: If the requester is neither the customer
                nor the provider of the booking
        """
        from payments.tasks import process_refund_request

        now = now or timezone.now()

        if requested_by.pk == booking.customer_id:
            cancelling_party = CancellingParty.CUSTOMER
        elif requested_by.pk == booking.provider_id:
            cancelling_party = CancellingParty.PROVIDER
        else:
            raise PermissionDeniedError(
                "Only the customer or the provider can cancel this booking",
                details={"booking_id": str(booking.id)},
            )

        with transaction.atomic():
            booking = Booking.objects.select_for_update().get(pk=booking.pk)
            eligibility = cls.check_eligibility(booking, cancelling_party, now)

            if not eligibility.eligible:
                return ServiceResult.failure(eligibility.reason, "REFUND_NOT_ELIGIBLE")

            # Nothing to pay back until the booking payment is held
            hold = EscrowHold.objects.filter(booking=booking).first()
            if hold is None or hold.status != EscrowHoldStatus.HELD:
                return ServiceResult.failure(ESCROW_NOT_HELD_MESSAGE, "ESCROW_NOT_HELD")

            refund = RefundRequest.objects.create(
                booking=booking,
                requested_by=requested_by,
                cancelling_party=cancelling_party,
                refund_percentage=eligibility.refund_percentage,
                refund_amount_cents=eligibility.refund_amount_cents,
                original_amount_cents=eligibility.original_amount_cents,
                currency=booking.currency,
                days_until_service=eligibility.days_until_service,
                policy_text=eligibility.policy_text,
                evaluated_at=now,
                reason=reason,
            )

            booking.cancel(reason or f"Cancelled by {cancelling_party}")
            booking.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])

            refund_key = str(refund.id)
            transaction.on_commit(lambda: process_refund_request.delay(refund_key))
            transaction.on_commit(lambda: cls._notify(refund, NotificationType.REFUND_REQUESTED))

        cls.get_logger().info(
            "Refund request submitted",
            extra={
                "refund_request_id": str(refund.id),
                "booking_id": str(booking.id),
                "cancelling_party": cancelling_party,
                "refund_percentage": refund.refund_percentage,
                "refund_amount_cents": refund.refund_amount_cents,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def cancel_refund_request(
        cls,
        refund_id: uuid.UUID | str,
        user,
    ) -> ServiceResult[RefundRequest]:
        """Withdraw a pending request. Only the requester may withdraw it."""
        with transaction.atomic():
            try:
                refund = RefundRequest.objects.select_for_update().get(pk=refund_id)
            except RefundRequest.DoesNotExist:
                return ServiceResult.failure("Refund request not found", "NOT_FOUND")

            if refund.requested_by_id != user.pk:
                return ServiceResult.failure(
                    "Only the requester can cancel this refund request",
                    "NOT_OWNER",
                )

            if refund.status != RefundRequestStatus.PENDING:
                return ServiceResult.failure(
                    f"Cannot cancel a {refund.status} refund request",
                    "INVALID_STATE",
                )

            refund.cancel(reason="Cancelled by requester")
            refund.save()

        return ServiceResult.success(refund)

    # =========================================================================
    # Processing
    # =========================================================================

    @classmethod
    def process_refund_request(cls, refund_id: uuid.UUID | str) -> ServiceResult[RefundRequest]:
        """
        Pay out a refund request.

        Raises:
            StripeError: Transient Stripe errors (is_retryable=True), with
                the request left in PROCESSING
        """
        logger = cls.get_logger()

        # Phase 1
        with transaction.atomic():
            try:
                refund = RefundRequest.objects.select_for_update().get(pk=refund_id)
            except RefundRequest.DoesNotExist:
                return ServiceResult.failure("Refund request not found", "NOT_FOUND")

            if refund.status == RefundRequestStatus.COMPLETED:
                return ServiceResult.success(refund)

            if refund.status not in (RefundRequestStatus.PENDING, RefundRequestStatus.PROCESSING):
                return ServiceResult.failure(
                    f"Cannot process a {refund.status} refund request",
                    "INVALID_STATE",
                )

            if refund.status == RefundRequestStatus.PENDING:
                rejection = cls._validate_for_processing(refund)
                refund.process()
                if rejection is not None:
                    refund.fail(rejection.error)
                    refund.save()
                    logger.warning(
                        "Refund request rejected",
                        extra={"refund_request_id": str(refund.id), "error_code": rejection.error_code},
                    )
                    return rejection
                refund.save()

        booking = refund.booking

        # Phase 2
        try:
            stripe_refund = StripeAdapter.create_refund(
                payment_intent_id=booking.stripe_payment_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="refund_request",
                    entity_id=refund.id,
                ),
                amount_cents=refund.refund_amount_cents,
                reason="requested_by_customer",
                metadata={"refund_request_id": str(refund.id), "booking_id": str(booking.id)},
            )
        except StripeError as e:
            if e.is_retryable:
                logger.warning(
                    f"Transient Stripe error, will retry: {type(e).__name__}",
                    extra={"refund_request_id": str(refund.id), "error": str(e)},
                )
                raise
            logger.error(
                f"Stripe refund failed: {type(e).__name__}",
                extra={"refund_request_id": str(refund.id), "error": str(e)},
            )
            with transaction.atomic():
                refund = RefundRequest.objects.select_for_update().get(pk=refund.id)
                refund.fail(e.message)
                refund.save()
            return ServiceResult.from_exception(e)

        # Phase 3
        with transaction.atomic():
            refund = RefundRequest.objects.select_for_update().get(pk=refund.id)
            if refund.status != RefundRequestStatus.PROCESSING:
                return ServiceResult.success(refund)

            hold = EscrowHold.objects.select_for_update().get(booking_id=refund.booking_id)
            cls._record_refund_entries(refund, hold)

            hold.refund()
            hold.save()
            Booking.objects.filter(pk=refund.booking_id).update(
                escrow_status=EscrowStatus.REFUNDED,
                updated_at=timezone.now(),
            )

            refund.complete(stripe_refund_id=stripe_refund.id)
            refund.save()

            transaction.on_commit(lambda: cls._notify(refund, NotificationType.REFUND_PROCESSED))

        logger.info(
            "Refund processed",
            extra={
                "refund_request_id": str(refund.id),
                "stripe_refund_id": stripe_refund.id,
                "refund_amount_cents": refund.refund_amount_cents,
            },
        )
        return ServiceResult.success(refund)

    @classmethod
    def _validate_for_processing(cls, refund: RefundRequest) -> ServiceResult | None:
        """Return a failure if the request must not be paid, else None."""
        booking = refund.booking

        quote = evaluate_refund_eligibility(
            scheduled_date=booking.scheduled_date,
            cancelling_party=refund.cancelling_party,
            original_amount_cents=refund.original_amount_cents,
            now=refund.evaluated_at,
            scheduled_time=booking.scheduled_time,
        )
        if (
            quote.refund_percentage != refund.refund_percentage
            or quote.refund_amount_cents != refund.refund_amount_cents
        ):
            return ServiceResult.failure(
                "Refund amount does not match the cancellation policy",
                "ELIGIBILITY_MISMATCH",
            )

        hold = EscrowHold.objects.filter(booking_id=refund.booking_id).first()
        if hold is None or hold.status != EscrowHoldStatus.HELD:
            return ServiceResult.failure(ESCROW_NOT_HELD_MESSAGE, "ESCROW_NOT_HELD")

        if not booking.stripe_payment_intent_id:
            return ServiceResult.failure(
                "Booking has no payment to refund",
                "MISSING_PAYMENT_INTENT",
            )

        return None

    @classmethod
    def _record_refund_entries(cls, refund: RefundRequest, hold: EscrowHold) -> None:
        """
        Refund the customer's share and pay the remainder to the provider.

        A partial refund leaves money in escrow that belongs to the
        provider under the cancellation policy.
        """
        escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW, hold.currency)
        refund_amount = min(refund.refund_amount_cents, hold.amount_cents)
        entries = []

        if refund_amount > 0:
            external = LedgerService.platform_account(AccountType.EXTERNAL_STRIPE, hold.currency)
            entries.append(
                RecordEntryParams(
                    debit_account_id=escrow.id,
                    credit_account_id=external.id,
                    amount_cents=refund_amount,
                    entry_type=EntryType.REFUND,
                    idempotency_key=f"refund:{refund.id}",
                    reference_type="refund_request",
                    reference_id=refund.id,
                    description=f"Refund for booking {refund.booking_id}",
                    created_by="refund_service",
                )
            )

        remainder = hold.amount_cents - refund_amount
        if remainder > 0:
            wallet = LedgerService.get_wallet(hold.provider_id, hold.currency)
            entries.append(
                RecordEntryParams(
                    debit_account_id=escrow.id,
                    credit_account_id=wallet.id,
                    amount_cents=remainder,
                    entry_type=EntryType.PAYOUT,
                    idempotency_key=f"refund_remainder:{refund.id}",
                    reference_type="refund_request",
                    reference_id=refund.id,
                    description=f"Cancellation share for booking {refund.booking_id}",
                    created_by="refund_service",
                )
            )

        LedgerService.record_entries(entries)

    @classmethod
    def _notify(cls, refund: RefundRequest, notification_type: str) -> None:
        amount = f"${refund.refund_amount_cents / 100:.2f}"
        if notification_type == NotificationType.REFUND_PROCESSED:
            title = "Refund Processed"
            body = f"Your refund of {amount} has been issued to your original payment method."
        else:
            title = "Refund Requested"
            body = f"Your booking was cancelled. A refund of {amount} ({refund.policy_text}) is on its way."

        try:
            NotificationService.create_notification(
                recipient=refund.booking.customer,
                notification_type=notification_type,
                title=title,
                body=body,
                data={
                    "refund_request_id": str(refund.id),
                    "booking_id": str(refund.booking_id),
                    "refund_amount_cents": refund.refund_amount_cents,
                },
                reference_id=str(refund.id),
                idempotency_key=f"{notification_type}:{refund.id}",
            )
        except Exception:
            cls.get_logger().exception(
                "Failed to send refund notification",
                extra={"refund_request_id": str(refund.id)},
            )


__all__ = ["RefundService"]
