"""
Tests for LedgerService.

Every recorded entry must move exactly two stored balances, and the stored
balance must always match the balance recomputed from entries.
"""

import uuid

import pytest

from payments.ledger.exceptions import (
    AccountNotFound,
    InactiveAccount,
    InsufficientBalance,
)
from payments.ledger.models import AccountType, EntryType, LedgerAccount, LedgerEntry
from payments.ledger.services import LedgerService
from payments.ledger.types import Money, RecordEntryParams


def _params(debit, credit, amount, key=None, entry_type=EntryType.PAYOUT):
    return RecordEntryParams(
        debit_account_id=debit.id,
        credit_account_id=credit.id,
        amount_cents=amount,
        entry_type=entry_type,
        idempotency_key=key or f"test-{uuid.uuid4()}",
    )


class TestAccountLookup:
    """Tests for platform accounts and wallets."""

    def test_platform_account_is_singleton(self, db):
        first = LedgerService.platform_account(AccountType.PLATFORM_ESCROW)
        second = LedgerService.platform_account(AccountType.PLATFORM_ESCROW)

        assert first.id == second.id
        assert first.allow_negative is False

    def test_external_account_may_go_negative(self, db):
        account = LedgerService.platform_account(AccountType.EXTERNAL_STRIPE)

        assert account.allow_negative is True

    def test_get_wallet_creates_user_balance_account(self, db):
        wallet = LedgerService.get_wallet(user_id=99)

        assert wallet.type == AccountType.USER_BALANCE
        assert wallet.owner_id == 99
        assert LedgerService.get_wallet(user_id=99).id == wallet.id

    def test_get_account_raises_for_unknown_id(self, db):
        with pytest.raises(AccountNotFound):
            LedgerService.get_account(uuid.uuid4())


class TestRecordEntry:
    """Tests for LedgerService.record_entry()."""

    def test_moves_both_balances(self, funded_escrow_account, wallet):
        LedgerService.record_entry(_params(funded_escrow_account, wallet, 2500))

        funded_escrow_account.refresh_from_db()
        wallet.refresh_from_db()
        assert funded_escrow_account.balance_cents == 7500
        assert wallet.balance_cents == 2500

    def test_stored_balance_matches_entries(self, funded_escrow_account, wallet):
        LedgerService.record_entry(_params(funded_escrow_account, wallet, 2500))
        LedgerService.record_entry(_params(funded_escrow_account, wallet, 1000))

        assert LedgerService.verify_balance(wallet.id) is True
        assert LedgerService.verify_balance(funded_escrow_account.id) is True
        assert LedgerService.get_balance(wallet.id) == Money(cents=3500)

    def test_replay_with_same_key_moves_no_money(
        self, funded_escrow_account, wallet, unique_idempotency_key
    ):
        first = LedgerService.record_entry(
            _params(funded_escrow_account, wallet, 2500, key=unique_idempotency_key)
        )
        second = LedgerService.record_entry(
            _params(funded_escrow_account, wallet, 2500, key=unique_idempotency_key)
        )

        wallet.refresh_from_db()
        assert first.id == second.id
        assert wallet.balance_cents == 2500
        assert LedgerEntry.objects.filter(idempotency_key=unique_idempotency_key).count() == 1

    def test_insufficient_balance_rejected(self, escrow_account, wallet):
        with pytest.raises(InsufficientBalance) as exc_info:
            LedgerService.record_entry(_params(escrow_account, wallet, 100))

        assert exc_info.value.required == 100
        assert exc_info.value.available == 0
        assert LedgerEntry.objects.count() == 0

    def test_inactive_credit_account_rejected(self, funded_escrow_account, inactive_account):
        with pytest.raises(InactiveAccount):
            LedgerService.record_entry(_params(funded_escrow_account, inactive_account, 100))

    def test_external_account_can_be_overdrawn(self, external_account, escrow_account):
        LedgerService.record_entry(
            _params(external_account, escrow_account, 5000, entry_type=EntryType.PAYMENT_RECEIVED)
        )

        external_account.refresh_from_db()
        assert external_account.balance_cents == -5000


class TestRecordEntries:
    """Tests for batch recording."""

    def test_batch_is_all_or_nothing(self, funded_escrow_account, wallet):
        other_wallet = LedgerService.get_wallet(user_id=5151)

        with pytest.raises(InsufficientBalance):
            LedgerService.record_entries(
                [
                    _params(funded_escrow_account, wallet, 6000),
                    _params(funded_escrow_account, other_wallet, 6000),
                ]
            )

        wallet.refresh_from_db()
        funded_escrow_account.refresh_from_db()
        assert wallet.balance_cents == 0
        assert funded_escrow_account.balance_cents == 10000

    def test_earlier_entry_funds_later_debit(self, external_account, escrow_account, wallet):
        LedgerService.record_entries(
            [
                _params(
                    external_account,
                    escrow_account,
                    4000,
                    entry_type=EntryType.PAYMENT_RECEIVED,
                ),
                _params(escrow_account, wallet, 4000),
            ]
        )

        assert LedgerAccount.objects.get(pk=wallet.pk).balance_cents == 4000
        assert LedgerAccount.objects.get(pk=escrow_account.pk).balance_cents == 0

    def test_unknown_account_rejected(self, escrow_account):
        params = RecordEntryParams(
            debit_account_id=escrow_account.id,
            credit_account_id=uuid.uuid4(),
            amount_cents=100,
            entry_type=EntryType.PAYOUT,
            idempotency_key="missing-account",
        )

        with pytest.raises(AccountNotFound):
            LedgerService.record_entries([params])

    def test_empty_batch(self, db):
        assert LedgerService.record_entries([]) == []


class TestRecordEntryParams:
    """Validation done when building params."""

    def test_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            RecordEntryParams(
                debit_account_id=uuid.uuid4(),
                credit_account_id=uuid.uuid4(),
                amount_cents=0,
                entry_type=EntryType.PAYOUT,
                idempotency_key="k",
            )

    def test_rejects_same_account(self):
        account_id = uuid.uuid4()
        with pytest.raises(ValueError):
            RecordEntryParams(
                debit_account_id=account_id,
                credit_account_id=account_id,
                amount_cents=100,
                entry_type=EntryType.PAYOUT,
                idempotency_key="k",
            )
