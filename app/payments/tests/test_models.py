"""
Tests for payment models.

Covers the database constraints that back the reconciliation invariants
and the django-fsm transitions on PaymentRecord, EscrowHold,
PayoutSchedule and RefundRequest.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from payments.models import PaymentRecord
from payments.state_machines import PaymentRecordStatus, PayoutStatus, RefundRequestStatus
from payments.tests.factories import PaymentRecordFactory, RefundRequestFactory


def reload(record: PaymentRecord) -> PaymentRecord:
    # status is protected, so refresh_from_db() cannot reload it
    return PaymentRecord.objects.get(pk=record.pk)


@pytest.mark.django_db
class TestPaymentRecordConstraints:
    def test_one_record_per_agreement_cycle(self, agreement):
        PaymentRecordFactory(agreement=agreement, billing_date=agreement.next_billing_date)

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(agreement=agreement, billing_date=agreement.next_billing_date)

    def test_amount_must_be_positive(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(amount_cents=0)

    def test_retry_count_bounded_by_max_retries(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(
                retry_count=4,
                max_retries=3,
                next_retry_at=timezone.now(),
            )

    def test_retrying_record_needs_next_retry_at(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(retry_count=1, next_retry_at=None)

    def test_next_retry_at_only_while_retrying(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(
                failed=True,
                next_retry_at=timezone.now() + timedelta(hours=1),
            )

    def test_charged_at_only_when_succeeded(self):
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentRecordFactory(charged_at=timezone.now())

    def test_max_retries_defaults_from_settings(self, agreement, settings):
        settings.RECURRING_PAYMENT_MAX_RETRIES = 5

        record = PaymentRecord.objects.create(
            agreement=agreement,
            payer=agreement.customer,
            payment_method_id=agreement.payment_method_id,
            amount_cents=agreement.amount_cents,
            billing_date=agreement.next_billing_date,
        )

        assert record.max_retries == 5


@pytest.mark.django_db
class TestPaymentRecordTransitions:
    def test_start_processing_counts_the_attempt(self):
        record = PaymentRecordFactory(retrying=True)

        record.start_processing()
        record.save()

        record = reload(record)
        assert record.status == PaymentRecordStatus.PROCESSING
        assert record.attempt_count == 2
        assert record.next_retry_at is None

    def test_mark_succeeded_clears_failure(self):
        record = PaymentRecordFactory(
            status=PaymentRecordStatus.PROCESSING,
            attempt_count=1,
            failure_code="card_declined",
            failure_reason="declined",
        )

        record.mark_succeeded("pi_123")
        record.save()

        record = reload(record)
        assert record.status == PaymentRecordStatus.SUCCEEDED
        assert record.external_transaction_reference == "pi_123"
        assert record.charged_at is not None
        assert record.failure_code is None

    def test_release_claim_gives_back_the_attempt(self):
        record = PaymentRecordFactory(status=PaymentRecordStatus.PROCESSING, attempt_count=3)

        record.release_claim()
        record.save()

        assert reload(record).attempt_count == 2

    def test_cannot_cancel_a_succeeded_record(self):
        record = PaymentRecordFactory(succeeded=True)

        with pytest.raises(TransitionNotAllowed):
            record.cancel()

    def test_status_cannot_be_assigned_directly(self):
        record = PaymentRecordFactory()

        with pytest.raises(AttributeError):
            record.status = PaymentRecordStatus.SUCCEEDED

    def test_is_due(self):
        now = timezone.now()
        fresh = PaymentRecordFactory()
        waiting = PaymentRecordFactory(retrying=True, next_retry_at=now + timedelta(hours=4))

        assert fresh.is_due(now) is True
        assert waiting.is_due(now) is False
        assert waiting.is_due(now + timedelta(hours=4)) is True

    def test_due_queryset(self):
        now = timezone.now()
        fresh = PaymentRecordFactory()
        PaymentRecordFactory(retrying=True, next_retry_at=now + timedelta(hours=1))
        PaymentRecordFactory(failed=True)

        assert list(PaymentRecord.objects.due(now)) == [fresh]

    def test_str(self):
        record = PaymentRecordFactory(amount_cents=5000)

        assert str(record) == f"PaymentRecord({record.id}, pending, 50.00 USD)"


@pytest.mark.django_db
class TestEscrowModels:
    def test_hold_split_matches_amount(self, payout_schedule):
        hold = payout_schedule.escrow_hold

        assert hold.amount_cents == hold.platform_fee_cents + hold.provider_payout_cents

    def test_revert_early_request_clears_flag(self, payout_schedule):
        payout_schedule.request_early_payout()
        payout_schedule.revert_early_request(reason="active disputes exist")

        assert payout_schedule.payout_status == PayoutStatus.PENDING
        assert payout_schedule.early_payout_requested is False
        assert payout_schedule.early_payout_requested_at is None

    def test_cannot_complete_without_request(self, payout_schedule):
        with pytest.raises(TransitionNotAllowed):
            payout_schedule.complete()


@pytest.mark.django_db
class TestRefundRequestModel:
    def test_refund_amount_cannot_exceed_original(self, booking):
        with pytest.raises(IntegrityError), transaction.atomic():
            RefundRequestFactory(
                booking=booking,
                refund_amount_cents=booking.price_cents + 1,
            )

    def test_lifecycle(self, booking):
        refund = RefundRequestFactory(booking=booking)

        refund.process()
        refund.complete(stripe_refund_id="re_123")

        assert refund.status == RefundRequestStatus.COMPLETED
        assert refund.processed_at is not None

    def test_only_pending_requests_can_be_cancelled(self, booking):
        refund = RefundRequestFactory(booking=booking)
        refund.process()

        with pytest.raises(TransitionNotAllowed):
            refund.cancel()
