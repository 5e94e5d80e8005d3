"""
PaymentRecord model for one scheduled recurring charge.

Each billing cycle of a RecurringAgreement produces one PaymentRecord. The
record tracks every attempt to collect that cycle's money: the claim by a
worker, the processor outcome, automatic retries with backoff, and the
final result.

Usage:
    from payments.models import PaymentRecord
    from payments.state_machines import PaymentRecordStatus

    record = PaymentRecord.objects.create(
        agreement=agreement,
        payer=agreement.customer,
        payment_method_id=agreement.payment_method_id,
        amount_cents=agreement.amount_cents,
        billing_date=agreement.next_billing_date,
    )

    # Claim for processing (compare-and-swap on status)
    record.start_processing()
    record.save()  # raises ConcurrentTransition if someone else claimed it

Note:
    The status field is protected, so refresh_from_db() cannot reload it.
    Re-fetch with PaymentRecord.objects.get(pk=...) instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PaymentRecordStatus

if TYPE_CHECKING:
    from datetime import datetime


def default_max_retries() -> int:
    return settings.RECURRING_PAYMENT_MAX_RETRIES


class PaymentRecordQuerySet(models.QuerySet):
    def due(self, now: datetime):
        """Pending records whose retry time (if any) has arrived."""
        return self.filter(status=PaymentRecordStatus.PENDING).filter(
            models.Q(next_retry_at__isnull=True) | models.Q(next_retry_at__lte=now)
        )

    def stale_processing(self, older_than: datetime):
        return self.filter(
            status=PaymentRecordStatus.PROCESSING,
            updated_at__lt=older_than,
        )


class PaymentRecord(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    One scheduled charge of a recurring agreement.

    ConcurrentTransitionMixin makes every save conditional on the status
    that was read, so two workers claiming the same pending record cannot
    both win: the loser's save raises ConcurrentTransition.

    Invariants (enforced by check constraints):
        - retry_count <= max_retries
        - next_retry_at is set iff status is pending and retry_count > 0
        - charged_at is set iff status is succeeded
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    agreement = models.ForeignKey(
        "bookings.RecurringAgreement",
        on_delete=models.PROTECT,
        related_name="payment_records",
        help_text="Agreement this charge belongs to",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_records",
        help_text="Customer being charged",
    )

    payment_method_id = models.CharField(
        max_length=255,
        help_text="Stripe PaymentMethod ID (pm_xxx) to charge",
    )

    # ==========================================================================
    # Amount & Cycle
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Charge amount in smallest currency unit (fixed at creation)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    billing_date = models.DateField(
        db_index=True,
        help_text="Billing cycle date this record charges for",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentRecordStatus.PENDING,
        choices=PaymentRecordStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment record (managed by FSM)",
    )

    # ==========================================================================
    # Retry Tracking
    # ==========================================================================

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Automatic retries scheduled in the current retry window",
    )

    max_retries = models.PositiveSmallIntegerField(
        default=default_max_retries,
        help_text="Automatic attempts allowed before the record fails",
    )

    attempt_count = models.PositiveIntegerField(
        default=0,
        help_text="Charge attempts ever made. Never reset; part of the idempotency key",
    )

    next_retry_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the next automatic attempt is due",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    failure_code = models.CharField(
        max_length=32,
        null=True,
        blank=True,
        help_text="Processor failure code of the last failed attempt",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Human-readable reason of the last failed attempt",
    )

    charged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge succeeded",
    )

    external_transaction_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) of the successful charge",
    )

    objects = PaymentRecordQuerySet.as_manager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["billing_date", "created_at"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="payment_record_due_idx"),
            models.Index(fields=["payer", "status"], name="payment_record_payer_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["agreement", "billing_date"],
                name="payment_record_unique_cycle",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_record_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(retry_count__lte=models.F("max_retries")),
                name="payment_record_retry_count_bounded",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        status=PaymentRecordStatus.PENDING,
                        retry_count__gt=0,
                        next_retry_at__isnull=False,
                    )
                    | (
                        ~models.Q(status=PaymentRecordStatus.PENDING, retry_count__gt=0)
                        & models.Q(next_retry_at__isnull=True)
                    )
                ),
                name="payment_record_next_retry_only_when_retrying",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(status=PaymentRecordStatus.SUCCEEDED, charged_at__isnull=False)
                    | (
                        ~models.Q(status=PaymentRecordStatus.SUCCEEDED)
                        & models.Q(charged_at__isnull=True)
                    )
                ),
                name="payment_record_charged_at_only_when_succeeded",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"PaymentRecord({self.id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentRecordStatus.PENDING,
        target=PaymentRecordStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Claim the record for a charge attempt.

        Transition: PENDING -> PROCESSING
        """
        self.attempt_count += 1
        self.next_retry_at = None

    @transition(
        field=status,
        source=PaymentRecordStatus.PROCESSING,
        target=PaymentRecordStatus.SUCCEEDED,
    )
    def mark_succeeded(self, reference: str, charged_at: datetime | None = None):
        """
        Record a successful charge.

        Transition: PROCESSING -> SUCCEEDED
        """
        self.external_transaction_reference = reference
        self.charged_at = charged_at or timezone.now()
        self.failure_code = None
        self.failure_reason = None

    @transition(
        field=status,
        source=PaymentRecordStatus.PROCESSING,
        target=PaymentRecordStatus.PENDING,
    )
    def schedule_retry(
        self,
        retry_count: int,
        next_retry_at: datetime,
        failure_code: str,
        failure_reason: str,
    ):
        """
        Put a failed attempt back in the queue for a later retry.

        Transition: PROCESSING -> PENDING
        """
        self.retry_count = retry_count
        self.next_retry_at = next_retry_at
        self.failure_code = failure_code
        self.failure_reason = failure_reason

    @transition(
        field=status,
        source=PaymentRecordStatus.PROCESSING,
        target=PaymentRecordStatus.FAILED,
    )
    def mark_failed(self, failure_code: str, failure_reason: str):
        """
        Stop automatic processing after a terminal failure.

        Transition: PROCESSING -> FAILED
        """
        self.next_retry_at = None
        self.failure_code = failure_code
        self.failure_reason = failure_reason

    @transition(
        field=status,
        source=PaymentRecordStatus.PROCESSING,
        target=PaymentRecordStatus.PENDING,
    )
    def release_claim(self, next_retry_at: datetime | None = None):
        """
        Return a claim abandoned by a crashed worker.

        The abandoned attempt's number is given back, so the next claim
        charges with the same idempotency key. If the lost call did reach
        Stripe, the processor replays its original result.

        Transition: PROCESSING -> PENDING
        """
        self.attempt_count = max(self.attempt_count - 1, 0)
        self.next_retry_at = next_retry_at

    @transition(
        field=status,
        source=[PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED],
        target=PaymentRecordStatus.PENDING,
    )
    def reset_for_manual_retry(self):
        """
        Start a fresh retry window at the customer's request.

        Transition: PENDING/FAILED -> PENDING
        """
        self.retry_count = 0
        self.next_retry_at = None

    @transition(
        field=status,
        source=[PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED],
        target=PaymentRecordStatus.CANCELLED,
    )
    def cancel(self):
        """
        Cancel the charge.

        Transition: PENDING/FAILED -> CANCELLED
        """
        self.next_retry_at = None

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            PaymentRecordStatus.SUCCEEDED,
            PaymentRecordStatus.CANCELLED,
        )

    @property
    def can_cancel(self) -> bool:
        return self.status in (PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED)

    def is_due(self, now: datetime) -> bool:
        return self.status == PaymentRecordStatus.PENDING and (
            self.next_retry_at is None or self.next_retry_at <= now
        )
