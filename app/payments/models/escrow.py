"""
Escrow models: funds held per booking and the schedule for paying them out.

An EscrowHold is created when a booking completes and holds the provider's
share until payout. The matching PayoutSchedule says when the regular
payout happens and when the provider may ask for it early.

Usage:
    from payments.models import PayoutSchedule

    schedule.request_early_payout()  # pending/scheduled -> processing
    schedule.save()

    # Later, inside EscrowSettlementService.release_early:
    hold.release()
    schedule.complete()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import EscrowHoldStatus, PayoutStatus


class EscrowHold(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    Funds held by the platform for a single booking.

    A hold is released to the provider or refunded to the customer,
    exactly once.

    Fields:
        booking: Booking the money was paid for
        amount_cents: Gross amount collected
        platform_fee_cents: Platform share kept on release
        provider_payout_cents: Provider share paid on release
        status: held, released or refunded
        expires_at: Hold expiry (default 90 days after holding)
    """

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="escrow_hold",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_holds_paid",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_holds_earned",
    )

    amount_cents = models.PositiveBigIntegerField()
    platform_fee_cents = models.PositiveBigIntegerField(default=0)
    provider_payout_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")

    status = FSMField(
        default=EscrowHoldStatus.HELD,
        choices=EscrowHoldStatus.choices,
        db_index=True,
        protected=True,
    )

    held_at = models.DateTimeField(default=timezone.now)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ["-held_at"]
        verbose_name = "Escrow Hold"
        verbose_name_plural = "Escrow Holds"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="escrow_hold_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    amount_cents=models.F("platform_fee_cents")
                    + models.F("provider_payout_cents")
                ),
                name="escrow_hold_split_matches_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"EscrowHold({self.id}, {self.status}, {self.amount_cents})"

    @transition(field=status, source=EscrowHoldStatus.HELD, target=EscrowHoldStatus.RELEASED)
    def release(self):
        self.released_at = timezone.now()

    @transition(field=status, source=EscrowHoldStatus.HELD, target=EscrowHoldStatus.REFUNDED)
    def refund(self):
        self.refunded_at = timezone.now()


class PayoutSchedule(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    When a completed booking's escrow is paid to the provider.

    Dates are derived from the booking's transaction type at completion:
    jobs are eligible three days after completion (early payout after
    three days, weekly cycle), services five days after completion (early
    payout after seven days, fortnightly cycle).
    """

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="payout_schedule",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_schedules",
    )
    escrow_hold = models.OneToOneField(
        EscrowHold,
        on_delete=models.PROTECT,
        related_name="payout_schedule",
    )

    transaction_type = models.CharField(max_length=32)
    completed_at = models.DateTimeField()
    eligible_for_payout_at = models.DateTimeField()
    scheduled_payout_date = models.DateField(db_index=True)
    early_payout_eligible_at = models.DateTimeField()

    early_payout_requested = models.BooleanField(default=False)
    early_payout_requested_at = models.DateTimeField(null=True, blank=True)

    payout_status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
    )
    payout_amount_cents = models.PositiveBigIntegerField()
    processed_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ["scheduled_payout_date"]
        verbose_name = "Payout Schedule"
        verbose_name_plural = "Payout Schedules"

    def __str__(self) -> str:
        return f"PayoutSchedule({self.id}, {self.payout_status}, {self.scheduled_payout_date})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=payout_status,
        source=[PayoutStatus.PENDING, PayoutStatus.SCHEDULED],
        target=PayoutStatus.PROCESSING,
    )
    def request_early_payout(self):
        """Transition: PENDING/SCHEDULED -> PROCESSING"""
        self.early_payout_requested = True
        self.early_payout_requested_at = timezone.now()

    @transition(
        field=payout_status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.PENDING,
    )
    def revert_early_request(self, reason: str):
        """
        Put a rejected early payout back on the regular schedule.

        Transition: PROCESSING -> PENDING
        """
        self.early_payout_requested = False
        self.early_payout_requested_at = None
        self.failure_reason = reason

    @transition(
        field=payout_status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.COMPLETED,
    )
    def complete(self):
        """Transition: PROCESSING -> COMPLETED"""
        self.processed_at = timezone.now()
        self.failure_reason = None
