"""
Double-entry ledger for booking money.

Four kinds of account exist: one wallet per provider, the platform escrow
account that holds customer payments until payout or refund, the platform
revenue account that collects fees, and an external Stripe account that
stands for money outside the platform.

A LedgerEntry moves amount_cents from its debit account to its credit
account. LedgerService updates both stored balances in the same
transaction as the insert, so balance_cents always matches what
get_balance() recomputes from the entries. Entries are never edited; a
mistake is corrected with an ADJUSTMENT entry.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce

from core.model_mixins import UUIDPrimaryKeyMixin


class AccountType(models.TextChoices):
    USER_BALANCE = "user_balance", "User Balance"
    PLATFORM_ESCROW = "platform_escrow", "Platform Escrow"
    PLATFORM_REVENUE = "platform_revenue", "Platform Revenue"
    # The only account allowed below zero
    EXTERNAL_STRIPE = "external_stripe", "External Stripe"


class EntryType(models.TextChoices):
    PAYMENT_RECEIVED = "payment_received", "Payment Received"
    PAYOUT = "payout", "Payout"
    REFUND = "refund", "Refund"
    FEE_COLLECTED = "fee_collected", "Fee Collected"
    ADJUSTMENT = "adjustment", "Adjustment"


class LedgerAccount(UUIDPrimaryKeyMixin, models.Model):
    """
    One balance per (type, owner, currency).

    owner_id is the provider's user id for wallets and null for the
    platform accounts. balance_cents is written by LedgerService only.
    """

    type = models.CharField(max_length=50, choices=AccountType.choices)
    owner_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    currency = models.CharField(max_length=3, default="usd")
    balance_cents = models.BigIntegerField(default=0)
    allow_negative = models.BooleanField(default=False)
    # Closed accounts reject new entries
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["type", "owner_id", "currency"],
                name="unique_account_per_owner",
            ),
            models.CheckConstraint(
                condition=Q(allow_negative=True) | Q(balance_cents__gte=0),
                name="ledger_account_balance_non_negative",
            ),
        ]
        indexes = [
            models.Index(fields=["type", "currency"], name="ledger_account_type_idx"),
        ]

    def __str__(self) -> str:
        label = self.get_type_display()
        return f"{label} ({self.owner_id})" if self.owner_id else label

    def get_balance(self) -> int:
        """Balance rebuilt from entries: everything credited minus everything debited."""
        credited = self.credit_entries.aggregate(total=Coalesce(Sum("amount_cents"), 0))["total"]
        debited = self.debit_entries.aggregate(total=Coalesce(Sum("amount_cents"), 0))["total"]
        return credited - debited


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    Money moved from debit_account to credit_account.

    reference_type/reference_id name the business object behind the move:
    escrow_hold, payment_record, payout_schedule or refund_request.
    idempotency_key is unique, so replaying a posting returns the entry
    already written.
    """

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    debit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="debit_entries",
    )
    credit_account = models.ForeignKey(
        LedgerAccount,
        on_delete=models.PROTECT,
        related_name="credit_entries",
    )
    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")
    entry_type = models.CharField(max_length=50, choices=EntryType.choices)

    reference_type = models.CharField(max_length=50, null=True, blank=True)
    reference_id = models.UUIDField(null=True, blank=True)
    description = models.TextField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_by = models.CharField(max_length=255, null=True, blank=True)
    idempotency_key = models.CharField(max_length=255, unique=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "Ledger entries"
        indexes = [
            models.Index(fields=["reference_type", "reference_id"], name="ledger_entry_reference_idx"),
            models.Index(fields=["entry_type"], name="ledger_entry_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount_cents__gt=0),
                name="ledger_entry_amount_cents_positive",
            ),
            models.CheckConstraint(
                condition=~Q(debit_account=models.F("credit_account")),
                name="ledger_entry_distinct_accounts",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_entry_type_display()} {self.amount_cents} {self.currency}"
