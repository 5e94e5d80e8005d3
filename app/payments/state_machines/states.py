"""
State enums for payment models.

These are Django TextChoices for database storage and admin integration,
used by the django-fsm fields on the payment models.

State Machines Overview:

PaymentRecord States:
    pending → processing → succeeded
    pending → processing → pending (retry scheduled)
    pending → processing → failed (retries exhausted or authentication required)
    processing → pending (stale claim released)
    pending/failed → pending (manual retry)
    pending/failed → cancelled

EscrowHold States:
    held → released
    held → refunded

PayoutSchedule States:
    pending/scheduled → processing (early payout requested) → completed
    processing → pending (early payout rejected, e.g. open dispute)

RefundRequest States:
    pending → processing → completed
    pending → processing → failed
    pending → cancelled
"""

from django.db import models


class PaymentRecordStatus(models.TextChoices):
    """
    States of one scheduled recurring charge.

    Terminal states: SUCCEEDED, CANCELLED. FAILED is terminal for
    automatic processing; only a manual retry or a cancel leaves it.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class ChargeFailureCode(models.TextChoices):
    """
    Processor failure taxonomy.

    AUTHENTICATION_REQUIRED needs the customer to act, so it is never
    retried automatically.
    """

    CARD_DECLINED = "card_declined", "Card Declined"
    INSUFFICIENT_FUNDS = "insufficient_funds", "Insufficient Funds"
    AUTHENTICATION_REQUIRED = "authentication_required", "Authentication Required"
    PROCESSOR_UNAVAILABLE = "processor_unavailable", "Processor Unavailable"


class EscrowHoldStatus(models.TextChoices):
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class PayoutStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SCHEDULED = "scheduled", "Scheduled"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class RefundRequestStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class CancellingParty(models.TextChoices):
    CUSTOMER = "customer", "Customer"
    PROVIDER = "provider", "Provider"


__all__ = [
    "CancellingParty",
    "ChargeFailureCode",
    "EscrowHoldStatus",
    "PaymentRecordStatus",
    "PayoutStatus",
    "RefundRequestStatus",
]
