"""
Tests for the PaymentRecord reconciliation state machine.

The machine is pure, so these tests need no database: they feed a
RecordState and an event and check the next state and the effects.
"""

from datetime import datetime, timedelta, timezone

import pytest

from payments.exceptions import InvalidStateTransitionError
from payments.state_machines import ChargeFailureCode, PaymentRecordStatus
from payments.state_machines.reconciliation import (
    BeginCharge,
    CancelRecord,
    CancelRequested,
    ChargeFailed,
    ChargeRequested,
    ChargeSucceeded,
    EmitLedgerPayment,
    FailPermanently,
    ManualRetryRequested,
    MarkSucceeded,
    NotifyPaymentFailed,
    NotifyRetryScheduled,
    PauseAgreement,
    RecordState,
    ReleaseClaim,
    ResetRetries,
    ScheduleRetry,
    StaleClaimReleased,
    transition,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
DECLINE = ChargeFailed(failure_code=ChargeFailureCode.CARD_DECLINED, failure_reason="declined")


def state(status=PaymentRecordStatus.PENDING, retry_count=0, max_retries=3, **kwargs):
    return RecordState(status=status, retry_count=retry_count, max_retries=max_retries, **kwargs)


def processing(retry_count=0, max_retries=3):
    return state(PaymentRecordStatus.PROCESSING, retry_count, max_retries)


class TestChargeRequested:
    def test_pending_record_begins_charge(self):
        result = transition(state(next_retry_at=NOW), ChargeRequested(), NOW)

        assert result.state.status == PaymentRecordStatus.PROCESSING
        assert result.state.next_retry_at is None
        assert result.effects == (BeginCharge(),)

    @pytest.mark.parametrize(
        "status",
        [
            PaymentRecordStatus.PROCESSING,
            PaymentRecordStatus.SUCCEEDED,
            PaymentRecordStatus.FAILED,
            PaymentRecordStatus.CANCELLED,
        ],
    )
    def test_lost_race_is_a_no_op(self, status):
        current = state(status)

        result = transition(current, ChargeRequested(), NOW)

        assert result.state == current
        assert result.changed is False


class TestChargeSucceeded:
    def test_success_records_charge_and_ledger_entry(self):
        current = state(
            PaymentRecordStatus.PROCESSING,
            retry_count=1,
            failure_code="card_declined",
            failure_reason="declined",
        )

        result = transition(current, ChargeSucceeded(reference="pi_123"), NOW)

        assert result.state.status == PaymentRecordStatus.SUCCEEDED
        assert result.state.failure_code is None
        assert result.effects == (
            MarkSucceeded(reference="pi_123", charged_at=NOW),
            EmitLedgerPayment(),
        )

    def test_success_on_pending_record_is_rejected(self):
        with pytest.raises(InvalidStateTransitionError):
            transition(state(), ChargeSucceeded(reference="pi_123"), NOW)


class TestChargeFailed:
    def test_first_failure_retries_in_one_hour(self):
        result = transition(processing(retry_count=0), DECLINE, NOW)

        assert result.state.status == PaymentRecordStatus.PENDING
        assert result.state.retry_count == 1
        assert result.state.next_retry_at == NOW + timedelta(hours=1)
        assert result.effects == (
            ScheduleRetry(
                retry_count=1,
                next_retry_at=NOW + timedelta(hours=1),
                failure_code=ChargeFailureCode.CARD_DECLINED,
                failure_reason="declined",
            ),
            NotifyRetryScheduled(next_retry_at=NOW + timedelta(hours=1), failure_reason="declined"),
        )

    def test_second_failure_retries_in_four_hours(self):
        result = transition(processing(retry_count=1), DECLINE, NOW)

        assert result.state.retry_count == 2
        assert result.state.next_retry_at == NOW + timedelta(hours=4)

    def test_third_failure_fails_and_pauses_agreement(self):
        result = transition(processing(retry_count=2), DECLINE, NOW)

        assert result.state.status == PaymentRecordStatus.FAILED
        assert result.state.retry_count == 2
        assert result.state.next_retry_at is None
        assert result.effects == (
            FailPermanently(failure_code=ChargeFailureCode.CARD_DECLINED, failure_reason="declined"),
            PauseAgreement(reason="declined"),
            NotifyPaymentFailed(failure_reason="declined", action_required=False),
        )

    def test_authentication_required_never_retries(self):
        event = ChargeFailed(
            failure_code=ChargeFailureCode.AUTHENTICATION_REQUIRED,
            failure_reason="verify",
        )

        result = transition(processing(retry_count=0), event, NOW)

        assert result.state.status == PaymentRecordStatus.FAILED
        assert NotifyPaymentFailed(failure_reason="verify", action_required=True) in result.effects

    def test_processor_unavailable_follows_retry_policy(self):
        event = ChargeFailed(
            failure_code=ChargeFailureCode.PROCESSOR_UNAVAILABLE,
            failure_reason="down",
        )

        result = transition(processing(retry_count=0), event, NOW)

        assert result.state.status == PaymentRecordStatus.PENDING

    def test_max_retries_of_one_fails_immediately(self):
        result = transition(processing(retry_count=0, max_retries=1), DECLINE, NOW)

        assert result.state.status == PaymentRecordStatus.FAILED


class TestStaleClaimReleased:
    def test_first_attempt_returns_to_queue(self):
        result = transition(processing(retry_count=0), StaleClaimReleased(), NOW)

        assert result.state.status == PaymentRecordStatus.PENDING
        assert result.state.next_retry_at is None
        assert result.effects == (ReleaseClaim(next_retry_at=None),)

    def test_retrying_record_is_due_immediately(self):
        result = transition(processing(retry_count=1), StaleClaimReleased(), NOW)

        assert result.state.next_retry_at == NOW
        assert result.effects == (ReleaseClaim(next_retry_at=NOW),)

    def test_only_processing_records_can_be_released(self):
        with pytest.raises(InvalidStateTransitionError):
            transition(state(), StaleClaimReleased(), NOW)


class TestManualRetryRequested:
    @pytest.mark.parametrize("status", [PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED])
    def test_resets_retry_window(self, status):
        current = state(status, retry_count=2, next_retry_at=None)

        result = transition(current, ManualRetryRequested(), NOW)

        assert result.state.status == PaymentRecordStatus.PENDING
        assert result.state.retry_count == 0
        assert result.effects == (ResetRetries(),)

    def test_succeeded_record_cannot_be_retried(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            transition(state(PaymentRecordStatus.SUCCEEDED), ManualRetryRequested(), NOW)

        assert exc_info.value.details == {
            "current_state": PaymentRecordStatus.SUCCEEDED,
            "event": "ManualRetryRequested",
        }


class TestCancelRequested:
    @pytest.mark.parametrize("status", [PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED])
    def test_cancels(self, status):
        result = transition(state(status), CancelRequested(), NOW)

        assert result.state.status == PaymentRecordStatus.CANCELLED
        assert result.effects == (CancelRecord(),)

    def test_cancelling_twice_is_a_no_op(self):
        result = transition(state(PaymentRecordStatus.CANCELLED), CancelRequested(), NOW)

        assert result.changed is False

    @pytest.mark.parametrize(
        "status", [PaymentRecordStatus.PROCESSING, PaymentRecordStatus.SUCCEEDED]
    )
    def test_in_flight_or_paid_records_cannot_be_cancelled(self, status):
        with pytest.raises(InvalidStateTransitionError):
            transition(state(status), CancelRequested(), NOW)
