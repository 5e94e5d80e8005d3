"""
Pytest fixtures for ledger tests.

Sections:
    - Account Fixtures: Platform accounts and wallets
    - Funding Fixtures: Accounts with money moved in through LedgerService
"""

import uuid

import pytest

from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import LedgerService
from payments.ledger.tests.factories import LedgerAccountFactory
from payments.ledger.types import RecordEntryParams


# ==========================================================================
# Account Fixtures
# ==========================================================================


@pytest.fixture
def external_account(db):
    """The outside world; allowed to go negative."""
    return LedgerService.platform_account(AccountType.EXTERNAL_STRIPE)


@pytest.fixture
def escrow_account(db):
    return LedgerService.platform_account(AccountType.PLATFORM_ESCROW)


@pytest.fixture
def wallet(db):
    """A provider wallet with no money in it."""
    return LedgerService.get_wallet(user_id=4242)


@pytest.fixture
def inactive_account(db):
    return LedgerAccountFactory(type=AccountType.USER_BALANCE, is_active=False)


# ==========================================================================
# Funding Fixtures
# ==========================================================================


@pytest.fixture
def funded_escrow_account(db, external_account, escrow_account):
    """Escrow holding 10000 cents collected from customers."""
    LedgerService.record_entry(
        RecordEntryParams(
            debit_account_id=external_account.id,
            credit_account_id=escrow_account.id,
            amount_cents=10000,
            entry_type=EntryType.PAYMENT_RECEIVED,
            idempotency_key=f"fund-escrow-{uuid.uuid4()}",
        )
    )
    escrow_account.refresh_from_db()
    return escrow_account


@pytest.fixture
def unique_idempotency_key():
    return f"test-{uuid.uuid4()}"
