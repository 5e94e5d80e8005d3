"""
Payment domain models.

This module contains all payment-related models:
- PaymentRecord: One scheduled charge of a recurring agreement
- EscrowHold: Booking funds held by the platform until payout
- PayoutSchedule: When and how a provider gets paid for a booking
- RefundRequest: A customer or provider cancellation asking for money back

Ledger models live in payments.ledger and are imported here so Django
discovers them as part of the payments app.
"""

from payments.ledger.models import LedgerAccount, LedgerEntry
from payments.models.escrow import EscrowHold, PayoutSchedule
from payments.models.payment_record import PaymentRecord
from payments.models.refund_request import RefundRequest

__all__ = [
    "EscrowHold",
    "LedgerAccount",
    "LedgerEntry",
    "PaymentRecord",
    "PayoutSchedule",
    "RefundRequest",
]
