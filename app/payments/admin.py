"""
Payment admin configuration.

This file imports admin configurations from the ledger submodule
and registers payment domain models with the Django admin.

Status fields are read-only here. State changes go through the service
layer so that ledger entries and notifications stay in step.
"""

from django.contrib import admin

from payments.ledger.admin import LedgerAccountAdmin, LedgerEntryAdmin
from payments.models import EscrowHold, PaymentRecord, PayoutSchedule, RefundRequest

__all__ = [
    "LedgerAccountAdmin",
    "LedgerEntryAdmin",
    "PaymentRecordAdmin",
    "EscrowHoldAdmin",
    "PayoutScheduleAdmin",
    "RefundRequestAdmin",
]


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    """
    Admin configuration for PaymentRecord.

    Provides visibility into recurring charges and their retry state.
    """

    list_display = [
        "id",
        "payer",
        "amount_display",
        "billing_date",
        "status",
        "retry_count",
        "next_retry_at",
        "failure_code",
    ]
    list_filter = ["status", "failure_code", "currency", "billing_date"]
    search_fields = ["id", "payer__email", "external_transaction_reference", "agreement__id"]
    readonly_fields = [
        "id",
        "status",
        "retry_count",
        "attempt_count",
        "next_retry_at",
        "failure_code",
        "failure_reason",
        "charged_at",
        "external_transaction_reference",
        "created_at",
        "updated_at",
    ]
    ordering = ["-billing_date"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "agreement", "payer", "payment_method_id"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_cents", "currency", "billing_date"),
            },
        ),
        (
            "State",
            {
                "fields": (
                    "status",
                    "retry_count",
                    "max_retries",
                    "attempt_count",
                    "next_retry_at",
                ),
            },
        ),
        (
            "Outcome",
            {
                "fields": (
                    "failure_code",
                    "failure_reason",
                    "charged_at",
                    "external_transaction_reference",
                ),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: PaymentRecord) -> str:
        return f"${obj.amount_cents / 100:.2f} {obj.currency.upper()}"


@admin.register(EscrowHold)
class EscrowHoldAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "booking",
        "provider",
        "amount_cents",
        "platform_fee_cents",
        "provider_payout_cents",
        "status",
        "expires_at",
    ]
    list_filter = ["status", "currency"]
    search_fields = ["id", "booking__id", "provider__email", "customer__email"]
    readonly_fields = ["id", "status", "held_at", "released_at", "refunded_at", "created_at", "updated_at"]
    ordering = ["-held_at"]


@admin.register(PayoutSchedule)
class PayoutScheduleAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "provider",
        "transaction_type",
        "payout_status",
        "payout_amount_cents",
        "scheduled_payout_date",
        "early_payout_requested",
    ]
    list_filter = ["payout_status", "transaction_type", "early_payout_requested"]
    search_fields = ["id", "booking__id", "provider__email"]
    readonly_fields = [
        "id",
        "payout_status",
        "early_payout_requested",
        "early_payout_requested_at",
        "processed_at",
        "failure_reason",
        "created_at",
        "updated_at",
    ]
    ordering = ["scheduled_payout_date"]


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    """
    Admin configuration for RefundRequest.

    The eligibility snapshot is read-only: it is what the customer was
    quoted.
    """

    list_display = [
        "id",
        "booking",
        "requested_by",
        "cancelling_party",
        "refund_percentage",
        "refund_amount_cents",
        "status",
        "created_at",
    ]
    list_filter = ["status", "cancelling_party"]
    search_fields = ["id", "booking__id", "requested_by__email", "stripe_refund_id"]
    readonly_fields = [
        "id",
        "status",
        "cancelling_party",
        "refund_percentage",
        "refund_amount_cents",
        "original_amount_cents",
        "days_until_service",
        "policy_text",
        "evaluated_at",
        "stripe_refund_id",
        "failure_reason",
        "processed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]
