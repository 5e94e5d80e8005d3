"""Django admin configuration for bookings, agreements and disputes."""

from django.contrib import admin

from .models import Booking, Dispute, RecurringAgreement


@admin.register(RecurringAgreement)
class RecurringAgreementAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "customer",
        "provider",
        "amount_cents",
        "currency",
        "frequency",
        "next_billing_date",
        "is_active",
    ]
    list_filter = ["frequency", "is_active", "currency"]
    search_fields = ["id", "customer__email", "provider__email", "payment_method_id"]
    readonly_fields = ["id", "created_at", "updated_at", "paused_at"]


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "customer",
        "provider",
        "transaction_type",
        "scheduled_date",
        "price_cents",
        "status",
        "escrow_status",
    ]
    list_filter = ["status", "escrow_status", "transaction_type"]
    search_fields = ["id", "customer__email", "provider__email"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ["id", "booking", "opened_by", "status", "created_at"]
    list_filter = ["status"]
    search_fields = ["id", "booking__id"]
    readonly_fields = ["id", "created_at", "updated_at"]
