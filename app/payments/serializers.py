"""
DRF serializers for payments app.

This module provides serializers for:
- Payment record display and payer statistics
- Agreement payment method updates
- Refund eligibility quotes and refund requests
- Booking payment confirmation and escrow holds
- Early payout results and wallet balance

Usage:
    serializer = PaymentRecordSerializer(record)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import EscrowHold, PaymentRecord, PayoutSchedule, RefundRequest


class PaymentRecordSerializer(serializers.ModelSerializer):
    """
    Payment record for API responses.

    The idempotency attempt counter and metadata stay internal.
    """

    agreement_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PaymentRecord
        fields = [
            "id",
            "agreement_id",
            "amount_cents",
            "currency",
            "billing_date",
            "status",
            "retry_count",
            "max_retries",
            "next_retry_at",
            "failure_code",
            "failure_reason",
            "charged_at",
            "external_transaction_reference",
            "created_at",
        ]
        read_only_fields = fields


class PaymentStatsSerializer(serializers.Serializer):
    total_paid_cents = serializers.IntegerField()
    total_pending_cents = serializers.IntegerField()
    total_failed_cents = serializers.IntegerField()
    success_rate = serializers.FloatField()


class PaymentMethodUpdateSerializer(serializers.Serializer):
    payment_method_id = serializers.RegexField(
        regex=r"^pm_[A-Za-z0-9_]+$",
        max_length=255,
        error_messages={"invalid": "Must be a Stripe PaymentMethod ID (pm_...)."},
    )


class RecurringAgreementSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    payment_method_id = serializers.CharField()
    amount_cents = serializers.IntegerField()
    currency = serializers.CharField()
    frequency = serializers.CharField()
    next_billing_date = serializers.DateField()
    is_active = serializers.BooleanField()
    paused_at = serializers.DateTimeField(allow_null=True)
    pause_reason = serializers.CharField(allow_null=True)


class RefundEligibilitySerializer(serializers.Serializer):
    eligible = serializers.BooleanField()
    refund_percentage = serializers.IntegerField()
    refund_amount_cents = serializers.IntegerField()
    original_amount_cents = serializers.IntegerField()
    days_until_service = serializers.IntegerField()
    policy_text = serializers.CharField()
    reason = serializers.CharField(allow_null=True)


class RefundRequestCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class RefundRequestSerializer(serializers.ModelSerializer):
    booking_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = RefundRequest
        fields = [
            "id",
            "booking_id",
            "cancelling_party",
            "status",
            "refund_percentage",
            "refund_amount_cents",
            "original_amount_cents",
            "currency",
            "days_until_service",
            "policy_text",
            "reason",
            "failure_reason",
            "processed_at",
            "created_at",
        ]
        read_only_fields = fields


class BookingPaymentSerializer(serializers.Serializer):
    payment_intent_id = serializers.RegexField(
        regex=r"^pi_[A-Za-z0-9_]+$",
        max_length=255,
        error_messages={"invalid": "Must be a Stripe PaymentIntent ID (pi_...)."},
    )


class EscrowHoldSerializer(serializers.ModelSerializer):
    booking_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = EscrowHold
        fields = [
            "id",
            "booking_id",
            "status",
            "amount_cents",
            "platform_fee_cents",
            "provider_payout_cents",
            "currency",
            "held_at",
        ]
        read_only_fields = fields


class PayoutScheduleSerializer(serializers.ModelSerializer):
    booking_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PayoutSchedule
        fields = [
            "id",
            "booking_id",
            "transaction_type",
            "payout_status",
            "payout_amount_cents",
            "scheduled_payout_date",
            "early_payout_eligible_at",
            "early_payout_requested",
            "early_payout_requested_at",
            "processed_at",
        ]
        read_only_fields = fields


class WalletSerializer(serializers.Serializer):
    balance_cents = serializers.IntegerField()
    currency = serializers.CharField()
    balance_display = serializers.CharField()
