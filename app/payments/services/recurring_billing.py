"""
Recurring billing: turns agreements into payment records.

A RecurringAgreement says how much to charge and how often. Once per day
the billing task creates a PaymentRecord for every active agreement whose
next_billing_date has arrived, then moves the agreement to its next date.
Charging the records is ReconciliationService's job.

Paused agreements are skipped until the customer resumes them.
"""

from __future__ import annotations

import calendar
import uuid
from datetime import date, timedelta

from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings.models import BillingFrequency, RecurringAgreement
from core.services import BaseService, ServiceResult
from payments.models import PaymentRecord
from payments.services.payment_record_store import PaymentRecordStore
from payments.state_machines import PaymentRecordStatus


def calculate_next_billing_date(current: date, frequency: str) -> date:
    """
    Next billing date after ``current``.

    Monthly billing keeps the day of month, clamped to the last day of
    shorter months (Jan 31 -> Feb 28).
    """
    if frequency == BillingFrequency.DAILY:
        return current + timedelta(days=1)
    if frequency == BillingFrequency.WEEKLY:
        return current + timedelta(days=7)
    if frequency == BillingFrequency.BIWEEKLY:
        return current + timedelta(days=14)
    if frequency == BillingFrequency.MONTHLY:
        year = current.year + current.month // 12
        month = current.month % 12 + 1
        day = min(current.day, calendar.monthrange(year, month)[1])
        return date(year, month, day)
    raise ValueError(f"Unknown billing frequency: {frequency}")


class RecurringBillingService(BaseService):
    @classmethod
    def create_due_payment_records(cls, today: date | None = None) -> int:
        """
        Create this cycle's record for every active agreement that is due.

        One cycle per agreement per run: an agreement that missed several
        dates catches up one record at a time rather than charging the
        customer for every missed cycle at once.

        Returns:
            Number of records created
        """
        today = today or timezone.localdate()
        logger = cls.get_logger()
        created = 0

        due_ids = list(
            RecurringAgreement.objects.filter(
                is_active=True,
                next_billing_date__lte=today,
            ).values_list("id", flat=True)
        )

        for agreement_id in due_ids:
            with transaction.atomic():
                agreement = RecurringAgreement.objects.select_for_update().get(pk=agreement_id)
                if not agreement.is_active or agreement.next_billing_date > today:
                    continue

                billing_date = agreement.next_billing_date
                exists = PaymentRecord.objects.filter(
                    agreement=agreement,
                    billing_date=billing_date,
                ).exists()

                if not exists:
                    try:
                        with transaction.atomic():
                            PaymentRecordStore.create(
                                agreement=agreement,
                                payer=agreement.customer,
                                payment_method_id=agreement.payment_method_id,
                                amount_cents=agreement.amount_cents,
                                currency=agreement.currency,
                                billing_date=billing_date,
                            )
                    except IntegrityError:
                        logger.info(
                            "Payment record already exists for cycle",
                            extra={
                                "agreement_id": str(agreement.id),
                                "billing_date": billing_date.isoformat(),
                            },
                        )
                    else:
                        created += 1

                agreement.next_billing_date = calculate_next_billing_date(
                    billing_date, agreement.frequency
                )
                agreement.save(update_fields=["next_billing_date", "updated_at"])

        logger.info(
            "Due payment records created",
            extra={"records_created": created, "agreements": len(due_ids), "today": today.isoformat()},
        )
        return created

    @classmethod
    def update_payment_method(
        cls,
        agreement_id: uuid.UUID | str,
        payment_method_id: str,
        requested_by=None,
    ) -> ServiceResult[RecurringAgreement]:
        """
        Switch an agreement to a new payment method.

        Pending records of the agreement are switched too, so the next
        retry charges the new method. Failed records keep the method they
        failed with.
        """
        if not payment_method_id:
            return ServiceResult.failure("A payment method is required", "VALIDATION_ERROR")

        with transaction.atomic():
            try:
                agreement = RecurringAgreement.objects.select_for_update().get(pk=agreement_id)
            except RecurringAgreement.DoesNotExist:
                return ServiceResult.failure("Recurring agreement not found", "NOT_FOUND")

            if requested_by is not None and agreement.customer_id != requested_by.pk:
                return ServiceResult.failure(
                    "Only the customer can change the payment method",
                    "NOT_OWNER",
                )

            agreement.payment_method_id = payment_method_id
            agreement.save(update_fields=["payment_method_id", "updated_at"])

            updated = PaymentRecord.objects.filter(
                agreement=agreement,
                status=PaymentRecordStatus.PENDING,
            ).update(payment_method_id=payment_method_id, updated_at=timezone.now())

        cls.get_logger().info(
            "Payment method updated",
            extra={"agreement_id": str(agreement.id), "pending_records_updated": updated},
        )
        return ServiceResult.success(agreement)

    @classmethod
    def resume_agreement(
        cls,
        agreement_id: uuid.UUID | str,
        requested_by=None,
    ) -> ServiceResult[RecurringAgreement]:
        """Re-activate a paused agreement. Resuming an active one is a no-op."""
        with transaction.atomic():
            try:
                agreement = RecurringAgreement.objects.select_for_update().get(pk=agreement_id)
            except RecurringAgreement.DoesNotExist:
                return ServiceResult.failure("Recurring agreement not found", "NOT_FOUND")

            if requested_by is not None and agreement.customer_id != requested_by.pk:
                return ServiceResult.failure("Only the customer can resume this agreement", "NOT_OWNER")

            if agreement.is_active:
                return ServiceResult.success(agreement)

            agreement.resume()
            agreement.save(update_fields=["is_active", "paused_at", "pause_reason", "updated_at"])

        cls.get_logger().info("Recurring agreement resumed", extra={"agreement_id": str(agreement.id)})
        return ServiceResult.success(agreement)


__all__ = ["RecurringBillingService", "calculate_next_billing_date"]
