"""
Booking-side models the payments core collaborates with.

- Booking: a scheduled job or service between a customer and a provider
- RecurringAgreement: a standing instruction to bill a customer on a cadence
- Dispute: a complaint raised against a booking

The payments app owns money movement. These models only carry the state
it reads (schedule dates, dispute status) and the flags it nudges
(agreement pause, booking escrow status, booking cancellation).
"""

from __future__ import annotations

from datetime import datetime, time

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class BookingStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class EscrowStatus(models.TextChoices):
    NONE = "none", "None"
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class TransactionType(models.TextChoices):
    """Kind of work a booking pays for. Drives payout timing."""

    JOB = "job", "Job"
    SERVICE = "service", "Service"
    CUSTOM_SERVICE = "custom_service", "Custom Service"


class BillingFrequency(models.TextChoices):
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    BIWEEKLY = "biweekly", "Every two weeks"
    MONTHLY = "monthly", "Monthly"


class DisputeStatus(models.TextChoices):
    OPEN = "open", "Open"
    UNDER_REVIEW = "under_review", "Under Review"
    INVESTIGATION_REQUIRED = "investigation_required", "Investigation Required"
    PENDING_RESOLUTION = "pending_resolution", "Pending Resolution"
    RESOLVED = "resolved", "Resolved"
    CLOSED = "closed", "Closed"
    APPEALED = "appealed", "Appealed"


# Disputes in these states block an early payout
PAYOUT_BLOCKING_DISPUTE_STATUSES = (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW)


class RecurringAgreement(UUIDPrimaryKeyMixin, BaseModel):
    """
    Standing instruction to charge a customer on a fixed cadence.

    One PaymentRecord is generated per billing date. When a record fails
    terminally the agreement is paused (is_active=False) and stays paused
    until the customer resumes it.
    """

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="recurring_agreements",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provided_agreements",
    )
    description = models.CharField(max_length=255, blank=True, default="")

    payment_method_id = models.CharField(
        max_length=255,
        help_text="Stripe PaymentMethod ID (pm_xxx) charged each cycle",
    )
    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Customer ID (cus_xxx) owning the payment method",
    )

    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")
    frequency = models.CharField(
        max_length=16,
        choices=BillingFrequency.choices,
        default=BillingFrequency.WEEKLY,
    )
    next_billing_date = models.DateField(db_index=True)

    is_active = models.BooleanField(default=True, db_index=True)
    paused_at = models.DateTimeField(null=True, blank=True)
    pause_reason = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Recurring Agreement"
        verbose_name_plural = "Recurring Agreements"
        indexes = [
            models.Index(fields=["is_active", "next_billing_date"], name="agreement_active_billing_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="recurring_agreement_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        state = "active" if self.is_active else "paused"
        return f"RecurringAgreement({self.id}, {self.frequency}, {state})"

    def pause(self, reason: str) -> None:
        self.is_active = False
        self.paused_at = timezone.now()
        self.pause_reason = reason

    def resume(self) -> None:
        self.is_active = True
        self.paused_at = None
        self.pause_reason = None


class Booking(UUIDPrimaryKeyMixin, BaseModel):
    """A scheduled job or service, paid up front and held in escrow."""

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="provided_bookings",
    )
    agreement = models.ForeignKey(
        RecurringAgreement,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings",
    )

    transaction_type = models.CharField(
        max_length=32,
        choices=TransactionType.choices,
        default=TransactionType.SERVICE,
    )
    scheduled_date = models.DateField()
    scheduled_time = models.TimeField(null=True, blank=True)

    price_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")
    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="PaymentIntent that funded this booking (pi_xxx)",
    )

    status = models.CharField(
        max_length=16,
        choices=BookingStatus.choices,
        default=BookingStatus.CONFIRMED,
        db_index=True,
    )
    escrow_status = models.CharField(
        max_length=16,
        choices=EscrowStatus.choices,
        default=EscrowStatus.NONE,
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ["-scheduled_date"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.scheduled_date}, {self.status})"

    def is_party(self, user) -> bool:
        return user.pk in (self.customer_id, self.provider_id)

    def scheduled_start(self) -> datetime:
        """Start of the booked slot; midnight when no time was booked."""
        start = datetime.combine(self.scheduled_date, self.scheduled_time or time.min)
        return timezone.make_aware(start)

    def cancel(self, reason: str | None = None) -> None:
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = timezone.now()
        self.cancellation_reason = reason


class DisputeQuerySet(models.QuerySet):
    def blocking_payout(self):
        """Disputes that still need an answer before money can move."""
        return self.filter(status__in=PAYOUT_BLOCKING_DISPUTE_STATUSES)


class Dispute(UUIDPrimaryKeyMixin, BaseModel):
    booking = models.ForeignKey(
        Booking,
        on_delete=models.CASCADE,
        related_name="disputes",
    )
    opened_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="opened_disputes",
    )
    status = models.CharField(
        max_length=32,
        choices=DisputeStatus.choices,
        default=DisputeStatus.OPEN,
        db_index=True,
    )
    reason = models.TextField()
    resolved_at = models.DateTimeField(null=True, blank=True)

    objects = DisputeQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dispute"
        verbose_name_plural = "Disputes"

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.status})"
