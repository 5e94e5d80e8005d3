"""
Ledger for money held and moved by the payments app.

Booking payments land in platform escrow, payouts move escrow into
provider wallets and fees into platform revenue, and refunds send escrow
back out to Stripe. Each of those is a LedgerEntry posted through
LedgerService.record_entry with an idempotency key tied to the business
object, so a retried task never posts twice.

    from payments.ledger import AccountType, EntryType, LedgerService, RecordEntryParams

    escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW)
    wallet = LedgerService.get_wallet(provider.pk)
    LedgerService.record_entry(RecordEntryParams(
        debit_account_id=escrow.id,
        credit_account_id=wallet.id,
        amount_cents=schedule.payout_amount_cents,
        entry_type=EntryType.PAYOUT,
        idempotency_key=f"early_payout:{schedule.id}",
    ))
"""

from .exceptions import AccountNotFound, InactiveAccount, InsufficientBalance, LedgerError
from .models import AccountType, EntryType, LedgerAccount, LedgerEntry
from .services import LedgerService
from .types import Money, RecordEntryParams

__all__ = [
    "AccountNotFound",
    "AccountType",
    "EntryType",
    "InactiveAccount",
    "InsufficientBalance",
    "LedgerAccount",
    "LedgerEntry",
    "LedgerError",
    "LedgerService",
    "Money",
    "RecordEntryParams",
]
