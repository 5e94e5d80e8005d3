"""
Payments app for recurring booking payments.

This app handles:
- Payment records for each billing cycle, with automatic retries
- Charging through Stripe with a shared circuit breaker
- Refund quotes and refund requests for cancelled bookings
- Escrow holds, payout schedules and early payouts
- Double-entry ledger for every money movement

Related apps:
    - bookings: Recurring agreements, bookings and disputes
    - notifications: Payment event notifications

Usage:
    from payments.services.reconciliation_service import ReconciliationService

    # Charge everything that is due
    summary = ReconciliationService.process_due_records()

    # Customer retries a failed payment
    result = ReconciliationService.manual_retry(record.id, requested_by=user)
"""
