"""
Pytest fixtures shared by all payment test packages.

Fixtures provide users, agreements, bookings and payment records in the
states the reconciliation, refund and escrow flows start from.

Sections:
    - User Fixtures
    - Processor Fixtures
    - Booking and Escrow Fixtures
    - Infrastructure Fixtures
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.models import TransactionType
from bookings.tests.factories import BookingFactory, RecurringAgreementFactory, UserFactory
from payments.services.escrow_settlement import EscrowSettlementService
from payments.services.reconciliation_service import ReconciliationService
from payments.tests.fakes import DECLINED, FakeProcessor


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def customer(db):
    return UserFactory()


@pytest.fixture
def provider(db):
    return UserFactory()


@pytest.fixture
def agreement(customer, provider):
    return RecurringAgreementFactory(customer=customer, provider=provider, amount_cents=5000)


# =============================================================================
# Processor Fixtures
# =============================================================================


@pytest.fixture
def fake_processor():
    """
    Install a FakeProcessor on ReconciliationService.

    Defaults to succeeding; tests replace .outcomes to script failures.
    """
    processor = FakeProcessor()
    ReconciliationService.set_processor_adapter(processor)
    yield processor
    ReconciliationService.set_processor_adapter(None)


@pytest.fixture
def declining_processor(fake_processor):
    fake_processor.outcomes = [DECLINED]
    return fake_processor


# =============================================================================
# Booking and Escrow Fixtures
# =============================================================================


@pytest.fixture
def booking(customer, provider):
    return BookingFactory(
        customer=customer,
        provider=provider,
        price_cents=10000,
        scheduled_date=timezone.localdate() + timedelta(days=10),
    )


@pytest.fixture
def paid_booking(booking):
    """A booking whose funds are held in escrow."""
    EscrowSettlementService.hold_funds(booking)
    booking.refresh_from_db()
    return booking


@pytest.fixture
def completed_at():
    return timezone.now() - timedelta(days=8)


@pytest.fixture
def payout_schedule(customer, provider, completed_at):
    """A service booking completed eight days ago; early payout is open."""
    booking = BookingFactory(
        customer=customer,
        provider=provider,
        price_cents=10000,
        transaction_type=TransactionType.SERVICE,
        scheduled_date=timezone.localdate() - timedelta(days=8),
    )
    result = EscrowSettlementService.create_payout_schedule(booking, now=completed_at)
    assert result.success
    return result.data


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def mock_redis_lock(mocker):
    """Redis connection for DistributedLock that always grants the lock."""
    redis = mocker.MagicMock()
    redis.set.return_value = True
    redis.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=redis)
    return redis
