"""
Durable storage for PaymentRecord.

The store owns reads and the one write that needs special care: the
claim. Claiming is a compare-and-swap from pending to processing. The
PaymentRecord model's ConcurrentTransitionMixin conditions the UPDATE on
the status that was read, so when several workers race for the same
record exactly one UPDATE matches a row; the others get False back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Count, Q, Sum

from django_fsm import ConcurrentTransition, can_proceed

from payments.exceptions import PaymentNotFoundError, PaymentValidationError
from payments.models import PaymentRecord
from payments.state_machines import PaymentRecordStatus

if TYPE_CHECKING:
    from datetime import date, datetime

    from django.db.models import QuerySet

    from bookings.models import RecurringAgreement


@dataclass(frozen=True)
class PaymentStats:
    total_paid_cents: int
    total_pending_cents: int
    total_failed_cents: int
    success_rate: float


class PaymentRecordStore:
    @staticmethod
    def create(
        agreement: RecurringAgreement,
        payer,
        payment_method_id: str,
        amount_cents: int,
        billing_date: date,
        currency: str = "usd",
    ) -> PaymentRecord:
        """
        Create a pending record for one billing cycle.

        Raises:
            PaymentValidationError: If the amount is not positive or the
                payment method is missing
        """
        if amount_cents <= 0:
            raise PaymentValidationError(
                "Payment amount must be positive",
                details={"amount_cents": amount_cents},
            )
        if not payment_method_id:
            raise PaymentValidationError("A payment method is required")

        return PaymentRecord.objects.create(
            agreement=agreement,
            payer=payer,
            payment_method_id=payment_method_id,
            amount_cents=amount_cents,
            currency=currency.lower(),
            billing_date=billing_date,
        )

    @staticmethod
    def get(record_id: uuid.UUID | str) -> PaymentRecord:
        try:
            return PaymentRecord.objects.get(id=record_id)
        except (PaymentRecord.DoesNotExist, DjangoValidationError):
            raise PaymentNotFoundError(
                f"PaymentRecord {record_id} not found",
                details={"payment_record_id": str(record_id)},
            )

    @staticmethod
    def get_for_update(record_id: uuid.UUID | str) -> PaymentRecord:
        """Row-lock a record. Must be called inside a transaction."""
        try:
            return PaymentRecord.objects.select_for_update().get(id=record_id)
        except PaymentRecord.DoesNotExist:
            raise PaymentNotFoundError(
                f"PaymentRecord {record_id} not found",
                details={"payment_record_id": str(record_id)},
            )

    @staticmethod
    def list_due(now: datetime, limit: int | None = None) -> list[PaymentRecord]:
        """Pending records whose retry time is unset or has passed, oldest first."""
        queryset = PaymentRecord.objects.due(now).order_by("billing_date", "created_at")
        if limit is not None:
            queryset = queryset[:limit]
        return list(queryset)

    @staticmethod
    def claim(record: PaymentRecord) -> bool:
        """
        Move a pending record to processing, if nobody else got there first.

        Returns:
            True if this caller owns the attempt. False if the record was
            not pending or another worker claimed it concurrently; the
            in-memory instance must then be discarded.
        """
        if not can_proceed(record.start_processing):
            return False

        try:
            with transaction.atomic():
                record.start_processing()
                record.save()
        except ConcurrentTransition:
            return False
        return True

    @staticmethod
    def list_stale_claims(older_than: datetime) -> list[PaymentRecord]:
        return list(PaymentRecord.objects.stale_processing(older_than).order_by("updated_at"))

    @staticmethod
    def list_for_agreement(agreement: RecurringAgreement) -> QuerySet[PaymentRecord]:
        return PaymentRecord.objects.filter(agreement=agreement).order_by("-billing_date")

    @staticmethod
    def stats_for_payer(payer) -> PaymentStats:
        """Totals by outcome and the success rate over settled records."""
        totals = PaymentRecord.objects.filter(payer=payer).aggregate(
            paid=Sum("amount_cents", filter=Q(status=PaymentRecordStatus.SUCCEEDED)),
            pending=Sum("amount_cents", filter=Q(status=PaymentRecordStatus.PENDING)),
            failed=Sum("amount_cents", filter=Q(status=PaymentRecordStatus.FAILED)),
            succeeded_count=Count("id", filter=Q(status=PaymentRecordStatus.SUCCEEDED)),
            failed_count=Count("id", filter=Q(status=PaymentRecordStatus.FAILED)),
        )

        settled = totals["succeeded_count"] + totals["failed_count"]
        success_rate = round(totals["succeeded_count"] / settled * 100, 2) if settled else 0.0

        return PaymentStats(
            total_paid_cents=totals["paid"] or 0,
            total_pending_cents=totals["pending"] or 0,
            total_failed_cents=totals["failed"] or 0,
            success_rate=success_rate,
        )


__all__ = ["PaymentRecordStore", "PaymentStats"]
