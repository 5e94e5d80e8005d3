"""
Payments app configuration.

This app provides the recurring payment core:
- Payment records with automatic retries and reconciliation
- Stripe processor adapter
- Escrow holds, payout schedules and early payouts
- Booking refund requests
- Double-entry bookkeeping ledger
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
