"""
Reconciliation state machine for PaymentRecord.

A pure transition function: given the current state of a record, an event
and the current time, it returns the next state and the list of effects
the caller must apply. It performs no I/O, so every path through the
retry policy can be tested without a database or a processor.

    pending     --ChargeRequested-->       processing   [BeginCharge]
    processing  --ChargeSucceeded-->       succeeded    [MarkSucceeded, EmitLedgerPayment]
    processing  --ChargeFailed (retry)-->  pending      [ScheduleRetry, NotifyRetryScheduled]
    processing  --ChargeFailed (stop)-->   failed       [FailPermanently, PauseAgreement,
                                                         NotifyPaymentFailed]
    processing  --StaleClaimReleased-->    pending      [ReleaseClaim]
    pending/failed --ManualRetryRequested--> pending    [ResetRetries]
    pending/failed --CancelRequested-->    cancelled    [CancelRecord]

ChargeRequested on a record that is no longer pending is a lost race and
returns the state unchanged with no effects. CancelRequested on a cancelled
record is a no-op. Anything else raises InvalidStateTransitionError.

Usage:
    from payments.state_machines.reconciliation import (
        ChargeFailed,
        RecordState,
        transition,
    )

    result = transition(
        RecordState.from_record(record),
        ChargeFailed(failure_code="card_declined", failure_reason="Your card was declined."),
        now=timezone.now(),
    )
    for effect in result.effects:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Union

from payments.exceptions import InvalidStateTransitionError
from payments.services.retry_scheduler import compute_next_retry
from payments.state_machines.states import ChargeFailureCode, PaymentRecordStatus

if TYPE_CHECKING:
    from datetime import datetime

    from payments.models import PaymentRecord


# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class RecordState:
    status: str
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None = None
    failure_code: str | None = None
    failure_reason: str | None = None

    @classmethod
    def from_record(cls, record: PaymentRecord) -> RecordState:
        return cls(
            status=record.status,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            next_retry_at=record.next_retry_at,
            failure_code=record.failure_code,
            failure_reason=record.failure_reason,
        )


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ChargeRequested:
    pass


@dataclass(frozen=True)
class ChargeSucceeded:
    reference: str


@dataclass(frozen=True)
class ChargeFailed:
    failure_code: str
    failure_reason: str


@dataclass(frozen=True)
class StaleClaimReleased:
    pass


@dataclass(frozen=True)
class ManualRetryRequested:
    pass


@dataclass(frozen=True)
class CancelRequested:
    pass


Event = Union[
    ChargeRequested,
    ChargeSucceeded,
    ChargeFailed,
    StaleClaimReleased,
    ManualRetryRequested,
    CancelRequested,
]


# =============================================================================
# Effects
# =============================================================================


@dataclass(frozen=True)
class BeginCharge:
    pass


@dataclass(frozen=True)
class MarkSucceeded:
    reference: str
    charged_at: datetime


@dataclass(frozen=True)
class EmitLedgerPayment:
    pass


@dataclass(frozen=True)
class ScheduleRetry:
    retry_count: int
    next_retry_at: datetime
    failure_code: str
    failure_reason: str


@dataclass(frozen=True)
class FailPermanently:
    failure_code: str
    failure_reason: str


@dataclass(frozen=True)
class PauseAgreement:
    reason: str


@dataclass(frozen=True)
class NotifyRetryScheduled:
    next_retry_at: datetime
    failure_reason: str


@dataclass(frozen=True)
class NotifyPaymentFailed:
    failure_reason: str
    action_required: bool = False


@dataclass(frozen=True)
class ReleaseClaim:
    next_retry_at: datetime | None = None


@dataclass(frozen=True)
class ResetRetries:
    pass


@dataclass(frozen=True)
class CancelRecord:
    pass


Effect = Union[
    BeginCharge,
    MarkSucceeded,
    EmitLedgerPayment,
    ScheduleRetry,
    FailPermanently,
    PauseAgreement,
    NotifyRetryScheduled,
    NotifyPaymentFailed,
    ReleaseClaim,
    ResetRetries,
    CancelRecord,
]


@dataclass(frozen=True)
class Transition:
    state: RecordState
    effects: tuple[Effect, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.effects)


# =============================================================================
# Transition Function
# =============================================================================


def transition(state: RecordState, event: Event, now: datetime) -> Transition:
    """
    Compute the next state of a payment record.

    Raises:
        InvalidStateTransitionError: If the event is not allowed in the
            current state
    """
    status = state.status

    if isinstance(event, ChargeRequested):
        if status != PaymentRecordStatus.PENDING:
            return Transition(state)
        return Transition(
            replace(state, status=PaymentRecordStatus.PROCESSING, next_retry_at=None),
            (BeginCharge(),),
        )

    if isinstance(event, ChargeSucceeded) and status == PaymentRecordStatus.PROCESSING:
        return Transition(
            replace(
                state,
                status=PaymentRecordStatus.SUCCEEDED,
                failure_code=None,
                failure_reason=None,
            ),
            (MarkSucceeded(reference=event.reference, charged_at=now), EmitLedgerPayment()),
        )

    if isinstance(event, ChargeFailed) and status == PaymentRecordStatus.PROCESSING:
        return _on_charge_failed(state, event, now)

    if isinstance(event, StaleClaimReleased) and status == PaymentRecordStatus.PROCESSING:
        # A record that was already retrying stays due immediately
        next_retry_at = now if state.retry_count > 0 else None
        return Transition(
            replace(state, status=PaymentRecordStatus.PENDING, next_retry_at=next_retry_at),
            (ReleaseClaim(next_retry_at=next_retry_at),),
        )

    if isinstance(event, ManualRetryRequested) and status in (
        PaymentRecordStatus.PENDING,
        PaymentRecordStatus.FAILED,
    ):
        return Transition(
            replace(
                state,
                status=PaymentRecordStatus.PENDING,
                retry_count=0,
                next_retry_at=None,
            ),
            (ResetRetries(),),
        )

    if isinstance(event, CancelRequested):
        if status == PaymentRecordStatus.CANCELLED:
            return Transition(state)
        if status in (PaymentRecordStatus.PENDING, PaymentRecordStatus.FAILED):
            return Transition(
                replace(state, status=PaymentRecordStatus.CANCELLED, next_retry_at=None),
                (CancelRecord(),),
            )

    raise InvalidStateTransitionError(
        f"{type(event).__name__} is not allowed for a {status} payment record",
        details={"current_state": status, "event": type(event).__name__},
    )


def _on_charge_failed(state: RecordState, event: ChargeFailed, now: datetime) -> Transition:
    action_required = event.failure_code == ChargeFailureCode.AUTHENTICATION_REQUIRED

    if not action_required:
        decision = compute_next_retry(state.retry_count, state.max_retries, now)
        if decision.should_retry:
            retry_count = state.retry_count + 1
            return Transition(
                replace(
                    state,
                    status=PaymentRecordStatus.PENDING,
                    retry_count=retry_count,
                    next_retry_at=decision.next_retry_at,
                    failure_code=event.failure_code,
                    failure_reason=event.failure_reason,
                ),
                (
                    ScheduleRetry(
                        retry_count=retry_count,
                        next_retry_at=decision.next_retry_at,
                        failure_code=event.failure_code,
                        failure_reason=event.failure_reason,
                    ),
                    NotifyRetryScheduled(
                        next_retry_at=decision.next_retry_at,
                        failure_reason=event.failure_reason,
                    ),
                ),
            )

    return Transition(
        replace(
            state,
            status=PaymentRecordStatus.FAILED,
            next_retry_at=None,
            failure_code=event.failure_code,
            failure_reason=event.failure_reason,
        ),
        (
            FailPermanently(failure_code=event.failure_code, failure_reason=event.failure_reason),
            PauseAgreement(reason=event.failure_reason),
            NotifyPaymentFailed(
                failure_reason=event.failure_reason,
                action_required=action_required,
            ),
        ),
    )


__all__ = [
    "BeginCharge",
    "CancelRecord",
    "CancelRequested",
    "ChargeFailed",
    "ChargeRequested",
    "ChargeSucceeded",
    "Effect",
    "EmitLedgerPayment",
    "Event",
    "FailPermanently",
    "ManualRetryRequested",
    "MarkSucceeded",
    "NotifyPaymentFailed",
    "NotifyRetryScheduled",
    "PauseAgreement",
    "RecordState",
    "ReleaseClaim",
    "ResetRetries",
    "ScheduleRetry",
    "StaleClaimReleased",
    "Transition",
    "transition",
]
