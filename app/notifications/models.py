"""
In-app notifications raised by the payment flows.

A notification is written after the money movement it describes has
committed (retry scheduled, payment failed, payout approved, refund
processed), so losing one never rolls back a payment. reference_id holds
the id of the PaymentRecord, PayoutSchedule or RefundRequest behind it.
Senders pass an idempotency_key so a repeated send is a no-op.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationType(models.TextChoices):
    PAYMENT_RETRY_SCHEDULED = "payment_retry_scheduled", "Payment Retry Scheduled"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    PAYMENT_ACTION_REQUIRED = "payment_action_required", "Payment Action Required"
    PAYMENT_SUCCEEDED = "payment_succeeded", "Payment Succeeded"
    EARLY_PAYOUT_APPROVED = "early_payout_approved", "Early Payout Approved"
    EARLY_PAYOUT_REJECTED = "early_payout_rejected", "Early Payout Rejected"
    REFUND_REQUESTED = "refund_requested", "Refund Requested"
    REFUND_PROCESSED = "refund_processed", "Refund Processed"
    SYSTEM = "system", "System"


class NotificationQuerySet(models.QuerySet):
    def for_recipient(self, user):
        return self.filter(recipient=user)

    def unread(self):
        return self.filter(is_read=False)


class Notification(BaseModel):
    """A message shown to one user about one payment event."""

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User the message is addressed to",
    )
    notification_type = models.CharField(
        max_length=64,
        choices=NotificationType.choices,
        default=NotificationType.SYSTEM,
        help_text="Payment event that produced the message",
    )

    title = models.CharField(max_length=500)
    body = models.TextField(blank=True, default="")
    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Amounts, dates and flags the client renders alongside the text",
    )

    reference_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Payment record, payout schedule or refund request id",
    )
    is_read = models.BooleanField(default=False, db_index=True)
    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Sender-chosen key; a second send with the same key is dropped",
    )

    objects = NotificationQuerySet.as_manager()

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        state = "read" if self.is_read else "unread"
        return f"Notification({self.id}, {self.notification_type}, {state})"

    def mark_read(self) -> bool:
        """Flag as read. Returns False when it already was."""
        if self.is_read:
            return False
        self.is_read = True
        self.save(update_fields=["is_read", "updated_at"])
        return True
