"""
Reconciliation service: drives PaymentRecords through their lifecycle.

The service is the only code that changes a PaymentRecord's status. Every
operation follows the same shape:

    1. Ask the state machine what an event means for the record
    2. Claim the record (compare-and-swap) when a charge is needed
    3. Call the processor OUTSIDE any database transaction
    4. Re-lock the row and apply the machine's effects in ONE transaction:
       status, retry bookkeeping, ledger entry and agreement pause commit
       together or not at all
    5. Send notifications after commit; a notification failure is logged
       and never undoes a payment outcome

A worker that dies between steps 2 and 4 leaves the record in processing.
release_stale_claims() returns such records to pending with the same
attempt number, so the next charge reuses the idempotency key and Stripe
replays the original result instead of charging twice.

Usage:
    from payments.services.reconciliation_service import ReconciliationService

    result = ReconciliationService.process_payment_record(record.id)
    if result.success:
        record = result.data

    # Tests inject a fake processor
    ReconciliationService.set_processor_adapter(fake_processor)
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import RecurringAgreement
from core.services import BaseService, ServiceResult
from notifications.models import NotificationType
from notifications.services import NotificationService
from payments.adapters import ChargeRequest, ChargeResult, IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import InvalidStateTransitionError, StripeError
from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import LedgerService
from payments.ledger.types import RecordEntryParams
from payments.services.payment_record_store import PaymentRecordStore
from payments.state_machines import PaymentRecordStatus
from payments.state_machines.reconciliation import (
    CancelRecord,
    CancelRequested,
    ChargeFailed,
    ChargeRequested,
    ChargeSucceeded,
    EmitLedgerPayment,
    FailPermanently,
    ManualRetryRequested,
    MarkSucceeded,
    NotifyPaymentFailed,
    NotifyRetryScheduled,
    PauseAgreement,
    RecordState,
    ReleaseClaim,
    ResetRetries,
    ScheduleRetry,
    StaleClaimReleased,
    transition,
)

if TYPE_CHECKING:
    from datetime import datetime

    from payments.adapters import PaymentProcessor
    from payments.models import PaymentRecord
    from payments.state_machines.reconciliation import Effect, Event, Transition


RETRY_SCHEDULED_TITLE = "Payment Retry Scheduled"
PAYMENT_FAILED_TITLE = "Recurring Payment Failed"
ACTION_REQUIRED_TITLE = "Payment Authentication Required"


@dataclass
class ProcessingSummary:
    """Counts from one batch of due records."""

    processed: int = 0
    succeeded: int = 0
    retry_scheduled: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconciliationService(BaseService):
    """
    Stateless orchestrator for recurring charges.

    The processor defaults to StripeAdapter and can be replaced with
    set_processor_adapter().
    """

    _processor: PaymentProcessor | None = None

    @classmethod
    def set_processor_adapter(cls, processor: PaymentProcessor | None) -> None:
        """Replace the processor. Pass None to restore StripeAdapter."""
        cls._processor = processor

    @classmethod
    def get_processor_adapter(cls) -> PaymentProcessor:
        return cls._processor or StripeAdapter

    # =========================================================================
    # Charging
    # =========================================================================

    @classmethod
    def process_payment_record(
        cls,
        record_id: uuid.UUID | str,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentRecord]:
        """
        Attempt to collect one payment record.

        A record that another worker already claimed, or that is no longer
        pending, is left alone and returned as-is.

        Raises:
            PaymentNotFoundError: If the record doesn't exist
        """
        now = now or timezone.now()
        logger = cls.get_logger()
        record = PaymentRecordStore.get(record_id)

        if record.status == PaymentRecordStatus.PENDING and not record.is_due(now):
            return ServiceResult.failure(
                f"Payment record is not due until {record.next_retry_at.isoformat()}",
                error_code="NOT_DUE",
            )

        if not transition(RecordState.from_record(record), ChargeRequested(), now).changed:
            logger.info(
                "Payment record not pending, skipping charge",
                extra={"payment_record_id": str(record.id), "status": record.status},
            )
            return ServiceResult.success(record)

        if not PaymentRecordStore.claim(record):
            logger.info(
                "Payment record claimed by another worker",
                extra={"payment_record_id": str(record.id)},
            )
            return ServiceResult.success(PaymentRecordStore.get(record.id))

        charge_result = cls._charge(record)

        if charge_result.is_success:
            event: Event = ChargeSucceeded(reference=charge_result.external_reference)
        else:
            event = ChargeFailed(
                failure_code=charge_result.failure_code,
                failure_reason=charge_result.failure_reason,
            )

        try:
            with transaction.atomic():
                record = PaymentRecordStore.get_for_update(record.id)
                cls._apply(record, transition(RecordState.from_record(record), event, now))
        except InvalidStateTransitionError as e:
            # The claim was released as stale while the charge was in flight
            logger.warning(
                "Charge outcome arrived after claim was released",
                extra={
                    "payment_record_id": str(record.id),
                    "status": e.details.get("current_state"),
                    "charge_status": charge_result.status,
                    "external_reference": charge_result.external_reference,
                    "failure_code": charge_result.failure_code,
                },
            )
            return ServiceResult.from_exception(e)

        logger.info(
            "Payment record processed",
            extra={
                "payment_record_id": str(record.id),
                "status": record.status,
                "attempt": record.attempt_count,
                "retry_count": record.retry_count,
                "failure_code": record.failure_code,
            },
        )
        return ServiceResult.success(record)

    @classmethod
    def _charge(cls, record: PaymentRecord) -> ChargeResult:
        request = ChargeRequest(
            payment_method_id=record.payment_method_id,
            amount_cents=record.amount_cents,
            currency=record.currency,
            idempotency_key=IdempotencyKeyGenerator.generate(
                operation="recurring_charge",
                entity_id=record.id,
                attempt=record.attempt_count,
            ),
            customer_id=record.agreement.stripe_customer_id or None,
            metadata={
                "payment_record_id": str(record.id),
                "agreement_id": str(record.agreement_id),
                "billing_date": record.billing_date.isoformat(),
            },
            description=f"Recurring payment for {record.billing_date.isoformat()}",
        )

        try:
            return cls.get_processor_adapter().charge(request)
        except StripeError as e:
            return ChargeResult.failed(e.failure_code, e.message)

    @classmethod
    def process_due_records(
        cls,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> ProcessingSummary:
        """Process every due record. One bad record does not stop the batch."""
        now = now or timezone.now()
        limit = limit or settings.DUE_PAYMENT_BATCH_SIZE
        summary = ProcessingSummary()

        for record in PaymentRecordStore.list_due(now, limit=limit):
            try:
                result = cls.process_payment_record(record.id, now=now)
            except Exception:
                cls.get_logger().exception(
                    "Failed to process payment record",
                    extra={"payment_record_id": str(record.id)},
                )
                summary.errors += 1
                continue

            summary.processed += 1
            status = result.data.status if result.success else None
            if status == PaymentRecordStatus.SUCCEEDED:
                summary.succeeded += 1
            elif status == PaymentRecordStatus.FAILED:
                summary.failed += 1
            elif status == PaymentRecordStatus.PENDING and result.data.retry_count > 0:
                summary.retry_scheduled += 1
            else:
                summary.skipped += 1

        cls.get_logger().info("Due payment records processed", extra=summary.to_dict())
        return summary

    # =========================================================================
    # Customer and operator actions
    # =========================================================================

    @classmethod
    def manual_retry(
        cls,
        record_id: uuid.UUID | str,
        requested_by,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentRecord]:
        """
        Start a fresh retry window and charge immediately.

        Only the payer may retry. The reset is committed before the charge,
        so the attempt gets its own claim and a new idempotency key.
        """
        now = now or timezone.now()

        with transaction.atomic():
            record = PaymentRecordStore.get_for_update(record_id)

            if record.payer_id != requested_by.pk:
                return ServiceResult.failure(
                    "Only the payer can retry this payment",
                    error_code="NOT_OWNER",
                )

            previous_retry_count = record.retry_count
            try:
                outcome = transition(RecordState.from_record(record), ManualRetryRequested(), now)
            except InvalidStateTransitionError as e:
                return ServiceResult.from_exception(e)

            record.metadata.setdefault("manual_retries", []).append(
                {
                    "requested_at": now.isoformat(),
                    "requested_by": requested_by.pk,
                    "previous_retry_count": previous_retry_count,
                    "previous_status": record.status,
                }
            )
            cls._apply(record, outcome)

        cls.get_logger().info(
            "Manual retry requested",
            extra={"payment_record_id": str(record.id), "requested_by": requested_by.pk},
        )
        return cls.process_payment_record(record.id, now=now)

    @classmethod
    def cancel(
        cls,
        record_id: uuid.UUID | str,
        now: datetime | None = None,
    ) -> ServiceResult[PaymentRecord]:
        """Cancel a pending or failed record. Cancelling twice is a no-op."""
        now = now or timezone.now()

        with transaction.atomic():
            record = PaymentRecordStore.get_for_update(record_id)
            try:
                outcome = transition(RecordState.from_record(record), CancelRequested(), now)
            except InvalidStateTransitionError as e:
                return ServiceResult.from_exception(e)
            cls._apply(record, outcome)

        return ServiceResult.success(record)

    @classmethod
    def release_stale_claims(cls, now: datetime | None = None) -> int:
        """
        Return records abandoned in processing to pending.

        Returns:
            Number of records released
        """
        now = now or timezone.now()
        threshold = now - timedelta(minutes=settings.STALE_PROCESSING_THRESHOLD_MINUTES)
        released = 0

        for stale in PaymentRecordStore.list_stale_claims(threshold):
            with transaction.atomic():
                record = PaymentRecordStore.get_for_update(stale.id)
                if record.status != PaymentRecordStatus.PROCESSING:
                    continue
                cls._apply(
                    record,
                    transition(RecordState.from_record(record), StaleClaimReleased(), now),
                )
            released += 1
            cls.get_logger().warning(
                "Released stale payment claim",
                extra={"payment_record_id": str(record.id), "attempt": record.attempt_count},
            )

        return released

    # =========================================================================
    # Effect application
    # =========================================================================

    @classmethod
    def _apply(cls, record: PaymentRecord, outcome: Transition) -> None:
        """
        Apply a transition's effects to a row-locked record.

        Must be called inside transaction.atomic(). Notifications are
        deferred until the transaction commits.
        """
        if not outcome.changed:
            return

        for effect in outcome.effects:
            cls._apply_effect(record, effect)

        record.save()

    @classmethod
    def _apply_effect(cls, record: PaymentRecord, effect: Effect) -> None:
        if isinstance(effect, MarkSucceeded):
            record.mark_succeeded(effect.reference, charged_at=effect.charged_at)
        elif isinstance(effect, EmitLedgerPayment):
            cls._record_ledger_payment(record)
        elif isinstance(effect, ScheduleRetry):
            record.schedule_retry(
                retry_count=effect.retry_count,
                next_retry_at=effect.next_retry_at,
                failure_code=effect.failure_code,
                failure_reason=effect.failure_reason,
            )
        elif isinstance(effect, FailPermanently):
            record.mark_failed(effect.failure_code, effect.failure_reason)
        elif isinstance(effect, PauseAgreement):
            agreement = RecurringAgreement.objects.select_for_update().get(pk=record.agreement_id)
            agreement.pause(effect.reason)
            agreement.save(update_fields=["is_active", "paused_at", "pause_reason", "updated_at"])
        elif isinstance(effect, ReleaseClaim):
            record.release_claim(next_retry_at=effect.next_retry_at)
        elif isinstance(effect, ResetRetries):
            record.reset_for_manual_retry()
        elif isinstance(effect, CancelRecord):
            record.cancel()
        elif isinstance(effect, NotifyRetryScheduled):
            transaction.on_commit(
                lambda: cls._notify_retry_scheduled(
                    record, effect.next_retry_at, effect.failure_reason
                )
            )
        elif isinstance(effect, NotifyPaymentFailed):
            transaction.on_commit(
                lambda: cls._notify_payment_failed(
                    record, effect.failure_reason, effect.action_required
                )
            )

    @classmethod
    def _record_ledger_payment(cls, record: PaymentRecord) -> None:
        external = LedgerService.platform_account(AccountType.EXTERNAL_STRIPE, record.currency)
        escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW, record.currency)

        LedgerService.record_entry(
            RecordEntryParams(
                debit_account_id=external.id,
                credit_account_id=escrow.id,
                amount_cents=record.amount_cents,
                entry_type=EntryType.PAYMENT_RECEIVED,
                idempotency_key=f"recurring_payment:{record.id}",
                reference_type="payment_record",
                reference_id=record.id,
                description=f"Recurring payment for {record.billing_date.isoformat()}",
                metadata={"external_reference": record.external_transaction_reference},
                created_by="reconciliation_service",
            )
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    @classmethod
    def _notify_retry_scheduled(
        cls,
        record: PaymentRecord,
        next_retry_at: datetime,
        failure_reason: str,
    ) -> None:
        retry_on = timezone.localtime(next_retry_at).strftime("%B %d, %Y at %H:%M")
        cls._send_notification(
            record,
            notification_type=NotificationType.PAYMENT_RETRY_SCHEDULED,
            title=RETRY_SCHEDULED_TITLE,
            body=(
                f"Your recurring payment failed. We'll retry automatically on {retry_on}. "
                f"Please ensure your payment method is valid. Reason: {failure_reason}"
            ),
            data={
                "retry_count": record.retry_count,
                "next_retry_at": next_retry_at.isoformat(),
            },
        )

    @classmethod
    def _notify_payment_failed(
        cls,
        record: PaymentRecord,
        failure_reason: str,
        action_required: bool,
    ) -> None:
        if action_required:
            notification_type = NotificationType.PAYMENT_ACTION_REQUIRED
            title = ACTION_REQUIRED_TITLE
            body = (
                "Your bank requires you to verify your recurring booking payment. "
                "Your recurring booking has been paused. Please authenticate the payment "
                "and resume the booking."
            )
        else:
            notification_type = NotificationType.PAYMENT_FAILED
            title = PAYMENT_FAILED_TITLE
            body = (
                "Your recurring booking payment could not be processed after multiple "
                "attempts. Your recurring booking has been paused. Please update your "
                "payment method and resume the booking. "
                f"Reason: {failure_reason}"
            )

        cls._send_notification(
            record,
            notification_type=notification_type,
            title=title,
            body=body,
            data={"failure_code": record.failure_code, "action_required": action_required},
        )

    @classmethod
    def _send_notification(
        cls,
        record: PaymentRecord,
        notification_type: str,
        title: str,
        body: str,
        data: dict,
    ) -> None:
        try:
            result = NotificationService.create_notification(
                recipient=record.payer,
                notification_type=notification_type,
                title=title,
                body=body,
                data={
                    "payment_record_id": str(record.id),
                    "agreement_id": str(record.agreement_id),
                    "amount_cents": record.amount_cents,
                    **data,
                },
                reference_id=str(record.id),
                idempotency_key=f"{notification_type}:{record.id}:{record.attempt_count}",
            )
        except Exception:
            cls.get_logger().exception(
                "Failed to send payment notification",
                extra={"payment_record_id": str(record.id), "type": notification_type},
            )
            return

        if not result.success:
            cls.get_logger().warning(
                "Payment notification not created",
                extra={
                    "payment_record_id": str(record.id),
                    "type": notification_type,
                    "error_code": result.error_code,
                },
            )


__all__ = ["ProcessingSummary", "ReconciliationService"]
