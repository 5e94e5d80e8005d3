"""
Tests for ReconciliationService.

A FakeProcessor stands in for Stripe (see payments/conftest.py), so every
test controls the charge outcome and inspects the requests sent.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.models import RecurringAgreement
from notifications.models import Notification, NotificationType
from payments.exceptions import PaymentNotFoundError
from payments.ledger.models import AccountType, EntryType, LedgerEntry
from payments.ledger.services import LedgerService
from payments.models import PaymentRecord
from payments.services.reconciliation_service import (
    PAYMENT_FAILED_TITLE,
    RETRY_SCHEDULED_TITLE,
    ReconciliationService,
)
from payments.state_machines import ChargeFailureCode, PaymentRecordStatus
from payments.tests.factories import PaymentRecordFactory
from payments.tests.fakes import AUTH_REQUIRED, DECLINED, SUCCEEDED


def reload(record):
    return PaymentRecord.objects.get(pk=record.pk)


@pytest.fixture
def record(agreement):
    return PaymentRecordFactory(agreement=agreement, max_retries=3)


@pytest.mark.django_db
class TestProcessPaymentRecord:
    def test_successful_charge(self, record, fake_processor):
        result = ReconciliationService.process_payment_record(record.id)

        assert result.success
        record = reload(record)
        assert record.status == PaymentRecordStatus.SUCCEEDED
        assert record.external_transaction_reference == "pi_fake_1"
        assert record.attempt_count == 1
        assert record.charged_at is not None

    def test_charge_request_uses_record_details(self, record, fake_processor):
        ReconciliationService.process_payment_record(record.id)

        request = fake_processor.requests[0]
        assert request.payment_method_id == record.payment_method_id
        assert request.amount_cents == 5000
        assert request.customer_id == record.agreement.stripe_customer_id
        assert request.idempotency_key.startswith(f"recurring_charge:{record.id}:1:")

    def test_success_credits_escrow_in_ledger(self, record, fake_processor):
        ReconciliationService.process_payment_record(record.id)

        entry = LedgerEntry.objects.get(idempotency_key=f"recurring_payment:{record.id}")
        assert entry.entry_type == EntryType.PAYMENT_RECEIVED
        assert entry.amount_cents == 5000
        escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW)
        assert LedgerService.get_balance(escrow.id).cents == 5000

    def test_three_declines_fail_the_record_and_pause_the_agreement(
        self, record, agreement, declining_processor
    ):
        now = timezone.now()

        ReconciliationService.process_payment_record(record.id, now=now)
        first = reload(record)
        assert first.status == PaymentRecordStatus.PENDING
        assert first.retry_count == 1
        assert first.next_retry_at == now + timedelta(hours=1)

        second_attempt_at = first.next_retry_at
        ReconciliationService.process_payment_record(record.id, now=second_attempt_at)
        second = reload(record)
        assert second.status == PaymentRecordStatus.PENDING
        assert second.retry_count == 2
        assert second.next_retry_at == second_attempt_at + timedelta(hours=4)

        ReconciliationService.process_payment_record(record.id, now=second.next_retry_at)
        third = reload(record)
        assert third.status == PaymentRecordStatus.FAILED
        assert third.next_retry_at is None
        assert third.retry_count == 2
        assert third.attempt_count == 3
        assert third.failure_code == ChargeFailureCode.CARD_DECLINED

        agreement.refresh_from_db()
        assert agreement.is_active is False
        assert agreement.paused_at is not None
        assert agreement.pause_reason == "Your card was declined."

    def test_each_attempt_gets_its_own_idempotency_key(self, record, declining_processor):
        now = timezone.now()
        ReconciliationService.process_payment_record(record.id, now=now)
        ReconciliationService.process_payment_record(record.id, now=now + timedelta(hours=1))

        keys = [r.idempotency_key for r in declining_processor.requests]
        assert len(set(keys)) == 2

    def test_authentication_required_fails_without_retry(self, record, agreement, fake_processor):
        fake_processor.outcomes = [AUTH_REQUIRED]

        ReconciliationService.process_payment_record(record.id)

        record = reload(record)
        assert record.status == PaymentRecordStatus.FAILED
        assert record.retry_count == 0
        agreement.refresh_from_db()
        assert agreement.is_active is False

    def test_recovers_after_a_decline(self, record, fake_processor):
        fake_processor.outcomes = [DECLINED, SUCCEEDED]
        now = timezone.now()

        ReconciliationService.process_payment_record(record.id, now=now)
        ReconciliationService.process_payment_record(record.id, now=now + timedelta(hours=1))

        record = reload(record)
        assert record.status == PaymentRecordStatus.SUCCEEDED
        assert record.retry_count == 1
        assert record.failure_code is None

    def test_record_not_yet_due(self, fake_processor):
        record = PaymentRecordFactory(
            retrying=True, next_retry_at=timezone.now() + timedelta(hours=2)
        )

        result = ReconciliationService.process_payment_record(record.id)

        assert not result.success
        assert result.error_code == "NOT_DUE"
        assert fake_processor.requests == []

    @pytest.mark.parametrize("trait", ["succeeded", "failed"])
    def test_settled_record_is_left_alone(self, fake_processor, trait):
        record = PaymentRecordFactory(**{trait: True})

        result = ReconciliationService.process_payment_record(record.id)

        assert result.success
        assert result.data.status == record.status
        assert fake_processor.requests == []

    def test_unknown_record_raises(self, fake_processor):
        with pytest.raises(PaymentNotFoundError):
            ReconciliationService.process_payment_record("00000000-0000-0000-0000-000000000000")


@pytest.mark.django_db
class TestNotifications:
    def test_retry_notification_sent_after_commit(
        self, record, customer, declining_processor, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            ReconciliationService.process_payment_record(record.id)

        notification = Notification.objects.get(recipient=customer)
        assert notification.notification_type == NotificationType.PAYMENT_RETRY_SCHEDULED
        assert notification.title == RETRY_SCHEDULED_TITLE
        assert notification.idempotency_key == (
            f"{NotificationType.PAYMENT_RETRY_SCHEDULED}:{record.id}:1"
        )

    def test_final_failure_notification(
        self, customer, declining_processor, django_capture_on_commit_callbacks
    ):
        record = PaymentRecordFactory(retrying=True, retry_count=2, agreement__customer=customer)

        with django_capture_on_commit_callbacks(execute=True):
            ReconciliationService.process_payment_record(record.id)

        notification = Notification.objects.get(recipient=customer)
        assert notification.notification_type == NotificationType.PAYMENT_FAILED
        assert notification.title == PAYMENT_FAILED_TITLE

    def test_action_required_notification(
        self, record, customer, fake_processor, django_capture_on_commit_callbacks
    ):
        fake_processor.outcomes = [AUTH_REQUIRED]

        with django_capture_on_commit_callbacks(execute=True):
            ReconciliationService.process_payment_record(record.id)

        notification = Notification.objects.get(recipient=customer)
        assert notification.notification_type == NotificationType.PAYMENT_ACTION_REQUIRED
        assert notification.data["action_required"] is True

    def test_no_notification_on_success(
        self, record, fake_processor, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            ReconciliationService.process_payment_record(record.id)

        assert not Notification.objects.exists()

    def test_notification_failure_does_not_undo_the_outcome(
        self, record, declining_processor, django_capture_on_commit_callbacks, mocker
    ):
        mocker.patch(
            "payments.services.reconciliation_service.NotificationService.create_notification",
            side_effect=RuntimeError("notifications down"),
        )

        with django_capture_on_commit_callbacks(execute=True):
            result = ReconciliationService.process_payment_record(record.id)

        assert result.success
        assert reload(record).retry_count == 1


@pytest.mark.django_db
class TestProcessDueRecords:
    def test_summary_counts_outcomes(self, fake_processor):
        fake_processor.outcomes = [SUCCEEDED, DECLINED, SUCCEEDED]
        today = timezone.localdate()
        PaymentRecordFactory(billing_date=today - timedelta(days=2))
        PaymentRecordFactory(billing_date=today - timedelta(days=1))
        PaymentRecordFactory(billing_date=today)
        PaymentRecordFactory(retrying=True, next_retry_at=timezone.now() + timedelta(hours=3))

        summary = ReconciliationService.process_due_records(timezone.now())

        assert summary.processed == 3
        assert summary.succeeded == 2
        assert summary.retry_scheduled == 1
        assert summary.errors == 0
        references = PaymentRecord.objects.filter(
            status=PaymentRecordStatus.SUCCEEDED
        ).values_list("external_transaction_reference", flat=True)
        assert sorted(references) == ["pi_fake_1", "pi_fake_3"]

    def test_one_broken_record_does_not_stop_the_batch(self, fake_processor, mocker):
        today = timezone.localdate()
        broken = PaymentRecordFactory(billing_date=today - timedelta(days=1))
        healthy = PaymentRecordFactory(billing_date=today)
        original = ReconciliationService.process_payment_record.__func__

        def flaky(cls, record_id, now=None):
            if record_id == broken.id:
                raise RuntimeError("database hiccup")
            return original(cls, record_id, now=now)

        mocker.patch.object(ReconciliationService, "process_payment_record", classmethod(flaky))

        summary = ReconciliationService.process_due_records(timezone.now())

        assert summary.errors == 1
        assert summary.succeeded == 1
        assert reload(healthy).status == PaymentRecordStatus.SUCCEEDED

    def test_respects_limit(self, fake_processor):
        PaymentRecordFactory.create_batch(3)

        summary = ReconciliationService.process_due_records(timezone.now(), limit=2)

        assert summary.processed == 2


@pytest.mark.django_db
class TestManualRetry:
    def test_failed_record_is_charged_again(self, customer, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, failed=True)

        result = ReconciliationService.manual_retry(record.id, requested_by=customer)

        assert result.success
        record = reload(record)
        assert record.status == PaymentRecordStatus.SUCCEEDED
        assert record.retry_count == 0
        assert record.attempt_count == 4
        assert fake_processor.requests[0].idempotency_key.startswith(
            f"recurring_charge:{record.id}:4:"
        )

    def test_retry_history_kept_in_metadata(self, customer, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, failed=True)

        ReconciliationService.manual_retry(record.id, requested_by=customer)

        history = reload(record).metadata["manual_retries"]
        assert len(history) == 1
        assert history[0]["previous_retry_count"] == 2
        assert history[0]["previous_status"] == PaymentRecordStatus.FAILED
        assert history[0]["requested_by"] == customer.pk

    def test_failed_retry_starts_a_new_backoff_window(self, customer, agreement, declining_processor):
        record = PaymentRecordFactory(agreement=agreement, failed=True)
        now = timezone.now()

        ReconciliationService.manual_retry(record.id, requested_by=customer, now=now)

        record = reload(record)
        assert record.status == PaymentRecordStatus.PENDING
        assert record.retry_count == 1
        assert record.next_retry_at == now + timedelta(hours=1)

    def test_only_payer_can_retry(self, provider, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, failed=True)

        result = ReconciliationService.manual_retry(record.id, requested_by=provider)

        assert result.error_code == "NOT_OWNER"
        assert reload(record).status == PaymentRecordStatus.FAILED
        assert fake_processor.requests == []

    def test_succeeded_record_cannot_be_retried(self, customer, agreement, fake_processor):
        record = PaymentRecordFactory(agreement=agreement, succeeded=True)

        result = ReconciliationService.manual_retry(record.id, requested_by=customer)

        assert result.error_code == "INVALID_STATE_TRANSITION"


@pytest.mark.django_db
class TestCancel:
    @pytest.mark.parametrize("trait", [{}, {"failed": True}, {"retrying": True}])
    def test_cancels_open_records(self, trait):
        record = PaymentRecordFactory(**trait)

        result = ReconciliationService.cancel(record.id)

        assert result.success
        record = reload(record)
        assert record.status == PaymentRecordStatus.CANCELLED
        assert record.next_retry_at is None

    def test_cancelling_twice_is_a_no_op(self):
        record = PaymentRecordFactory()
        ReconciliationService.cancel(record.id)

        result = ReconciliationService.cancel(record.id)

        assert result.success
        assert result.data.status == PaymentRecordStatus.CANCELLED

    def test_succeeded_record_cannot_be_cancelled(self):
        record = PaymentRecordFactory(succeeded=True)

        result = ReconciliationService.cancel(record.id)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert reload(record).status == PaymentRecordStatus.SUCCEEDED


@pytest.mark.django_db
class TestReleaseStaleClaims:
    def _stale(self, minutes_ago=45, **kwargs):
        record = PaymentRecordFactory(status=PaymentRecordStatus.PROCESSING, **kwargs)
        PaymentRecord.objects.filter(pk=record.pk).update(
            updated_at=timezone.now() - timedelta(minutes=minutes_ago)
        )
        return record

    def test_first_attempt_returns_to_pending(self):
        record = self._stale(attempt_count=1)

        released = ReconciliationService.release_stale_claims()

        assert released == 1
        record = reload(record)
        assert record.status == PaymentRecordStatus.PENDING
        assert record.attempt_count == 0
        assert record.next_retry_at is None

    def test_retry_attempt_is_due_immediately(self):
        now = timezone.now()
        record = self._stale(attempt_count=2, retry_count=1)

        ReconciliationService.release_stale_claims(now)

        record = reload(record)
        assert record.next_retry_at == now
        assert record.is_due(now)

    def test_recent_claims_are_left_alone(self):
        record = self._stale(minutes_ago=5, attempt_count=1)

        assert ReconciliationService.release_stale_claims() == 0
        assert reload(record).status == PaymentRecordStatus.PROCESSING

    def test_released_record_reuses_its_idempotency_key(self, fake_processor):
        record = self._stale(attempt_count=1)

        ReconciliationService.release_stale_claims()
        ReconciliationService.process_payment_record(record.id)

        assert fake_processor.requests[0].idempotency_key.startswith(
            f"recurring_charge:{record.id}:1:"
        )

    def test_late_charge_outcome_after_release_is_reported(self, record, fake_processor):
        charge = fake_processor.charge

        def slow_charge(request):
            ReconciliationService.release_stale_claims(timezone.now() + timedelta(hours=1))
            return charge(request)

        fake_processor.charge = slow_charge

        result = ReconciliationService.process_payment_record(record.id)

        assert not result.success
        assert result.error_code == "INVALID_STATE_TRANSITION"
        record = reload(record)
        assert record.status == PaymentRecordStatus.PENDING
        assert record.external_transaction_reference is None
        assert record.attempt_count == 0


@pytest.mark.django_db
class TestProcessorSelection:
    def test_defaults_to_stripe(self):
        from payments.adapters import StripeAdapter

        assert ReconciliationService.get_processor_adapter() is StripeAdapter

    def test_agreement_model_untouched_by_success(self, record, agreement, fake_processor):
        ReconciliationService.process_payment_record(record.id)

        assert RecurringAgreement.objects.get(pk=agreement.pk).is_active is True
