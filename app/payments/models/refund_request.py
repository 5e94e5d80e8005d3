"""
RefundRequest model for a booking cancellation refund.

The request stores a snapshot of the eligibility quote the customer saw.
Processing recomputes the quote from the same inputs and refuses to pay
out if the two disagree.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import CancellingParty, RefundRequestStatus


class RefundRequest(UUIDPrimaryKeyMixin, BaseModel):
    """
    Refund owed to a customer for a cancelled booking.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING -> PROCESSING -> FAILED
        PENDING -> CANCELLED (withdrawn by the requester)
    """

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="refund_requests",
    )
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refund_requests",
    )
    cancelling_party = models.CharField(
        max_length=16,
        choices=CancellingParty.choices,
    )

    status = FSMField(
        default=RefundRequestStatus.PENDING,
        choices=RefundRequestStatus.choices,
        db_index=True,
        protected=True,
    )

    # ==========================================================================
    # Eligibility snapshot
    # ==========================================================================

    refund_percentage = models.PositiveSmallIntegerField()
    refund_amount_cents = models.PositiveBigIntegerField()
    original_amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")
    days_until_service = models.IntegerField()
    policy_text = models.CharField(max_length=255)
    evaluated_at = models.DateTimeField(
        help_text="Moment the eligibility quote was computed for",
    )

    reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Processing outcome
    # ==========================================================================

    stripe_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Refund ID (re_xxx)",
    )
    failure_reason = models.TextField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Request"
        verbose_name_plural = "Refund Requests"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(refund_percentage__lte=100),
                name="refund_request_percentage_bounded",
            ),
            models.CheckConstraint(
                condition=models.Q(refund_amount_cents__lte=models.F("original_amount_cents")),
                name="refund_request_amount_bounded",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundRequest({self.id}, {self.status}, {self.refund_percentage}%)"

    @transition(
        field=status,
        source=RefundRequestStatus.PENDING,
        target=RefundRequestStatus.PROCESSING,
    )
    def process(self):
        pass

    @transition(
        field=status,
        source=RefundRequestStatus.PROCESSING,
        target=RefundRequestStatus.COMPLETED,
    )
    def complete(self, stripe_refund_id: str | None = None):
        self.stripe_refund_id = stripe_refund_id
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=RefundRequestStatus.PROCESSING,
        target=RefundRequestStatus.FAILED,
    )
    def fail(self, reason: str):
        self.failure_reason = reason
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=RefundRequestStatus.PENDING,
        target=RefundRequestStatus.CANCELLED,
    )
    def cancel(self, reason: str = "Cancelled by customer"):
        self.failure_reason = reason
        self.cancelled_at = timezone.now()
