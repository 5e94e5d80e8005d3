"""
Escrow settlement: moving held booking funds to the provider.

When a booking completes, the customer's money sits in an EscrowHold and a
PayoutSchedule says when the provider gets it:

    Transaction type      Payout cut-off   Early payout after   Payout cycle
    job                   3 days           3 days               weekly
    service               5 days           7 days               every 2 weeks
    custom_service        5 days           7 days               every 2 weeks

A provider may ask for the money early. The request moves the schedule to
processing and queues release_early(), which re-checks everything under a
distributed lock and either pays the provider's wallet or puts the
schedule back on the regular timetable.

Usage:
    from payments.services.escrow_settlement import EscrowSettlementService

    result = EscrowSettlementService.release_early(schedule.id)
    if not result:
        print(result.error_code)  # e.g. "ACTIVE_DISPUTES"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from django_fsm import can_proceed

from bookings.models import Booking, BookingStatus, Dispute, EscrowStatus, TransactionType
from core.services import BaseService, ServiceResult
from notifications.models import NotificationType
from notifications.services import NotificationService
from payments.adapters import StripeAdapter
from payments.exceptions import LockAcquisitionError, StripeError
from payments.ledger.models import AccountType, EntryType
from payments.ledger.services import LedgerService
from payments.ledger.types import RecordEntryParams
from payments.locks import DistributedLock
from payments.models import EscrowHold, PayoutSchedule
from payments.state_machines import EscrowHoldStatus, PayoutStatus

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class PayoutTiming:
    cutoff_days: int
    early_payout_days: int
    cycle_days: int


PAYOUT_TIMING = {
    TransactionType.JOB: PayoutTiming(cutoff_days=3, early_payout_days=3, cycle_days=7),
    TransactionType.SERVICE: PayoutTiming(cutoff_days=5, early_payout_days=7, cycle_days=14),
    TransactionType.CUSTOM_SERVICE: PayoutTiming(cutoff_days=5, early_payout_days=7, cycle_days=14),
}

ACTIVE_DISPUTES_MESSAGE = "active disputes exist"


@dataclass(frozen=True)
class EarlyPayoutResult:
    success: bool
    payout_amount_cents: int


def calculate_platform_fee(amount_cents: int, fee_percent: int | None = None) -> int:
    """Platform share of a booking amount, rounded half up to the cent."""
    if fee_percent is None:
        fee_percent = settings.PLATFORM_FEE_PERCENT
    fee = Decimal(amount_cents) * Decimal(fee_percent) / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class EscrowSettlementService(BaseService):
    """
    Escrow holds and provider payouts.

    All money movement is recorded in the ledger in the same transaction
    as the state change it belongs to.
    """

    LOCK_TTL_SECONDS = 30

    # =========================================================================
    # Payment and completion
    # =========================================================================

    @classmethod
    def record_booking_payment(
        cls,
        booking_id: uuid.UUID | str,
        payment_intent_id: str,
        requested_by=None,
        now: datetime | None = None,
    ) -> ServiceResult[EscrowHold]:
        """
        Confirm a booking's PaymentIntent with Stripe and hold the funds.

        Recording the same PaymentIntent twice returns the existing hold.
        The Stripe lookup happens outside the database transaction.
        """
        now = now or timezone.now()
        logger = cls.get_logger()

        try:
            booking = Booking.objects.get(pk=booking_id)
        except Booking.DoesNotExist:
            return ServiceResult.failure("Booking not found", "NOT_FOUND")

        if requested_by is not None and booking.customer_id != requested_by.pk:
            return ServiceResult.failure("Only the customer can pay for this booking", "NOT_OWNER")

        existing = EscrowHold.objects.filter(booking=booking).first()
        if existing is not None:
            if booking.stripe_payment_intent_id == payment_intent_id:
                return ServiceResult.success(existing)
            return ServiceResult.failure("Booking is already paid", "ALREADY_PAID")

        if booking.status != BookingStatus.CONFIRMED:
            return ServiceResult.failure(
                f"Cannot pay for a {booking.status} booking",
                "INVALID_BOOKING_STATE",
            )

        try:
            intent = StripeAdapter.retrieve_payment_intent(payment_intent_id)
        except StripeError as e:
            logger.warning(
                "Could not confirm booking payment",
                extra={"booking_id": str(booking.id), "payment_intent_id": payment_intent_id},
            )
            return ServiceResult.from_exception(e)

        if (
            not intent.is_paid
            or intent.amount_received_cents < booking.price_cents
            or intent.currency != booking.currency
        ):
            return ServiceResult.failure(
                "Payment has not been completed for this booking",
                "PAYMENT_NOT_CONFIRMED",
            )

        with transaction.atomic():
            booking = Booking.objects.select_for_update().get(pk=booking.pk)
            if booking.status != BookingStatus.CONFIRMED:
                return ServiceResult.failure(
                    f"Cannot pay for a {booking.status} booking",
                    "INVALID_BOOKING_STATE",
                )
            if EscrowHold.objects.filter(booking=booking).exists():
                return ServiceResult.failure("Booking is already paid", "ALREADY_PAID")

            booking.stripe_payment_intent_id = intent.id
            booking.save(update_fields=["stripe_payment_intent_id", "updated_at"])
            hold = cls.hold_funds(booking, now)

        logger.info(
            "Booking payment held in escrow",
            extra={
                "booking_id": str(booking.id),
                "escrow_hold_id": str(hold.id),
                "payment_intent_id": intent.id,
                "amount_cents": hold.amount_cents,
            },
        )
        return ServiceResult.success(hold)

    @classmethod
    def complete_booking(
        cls,
        booking_id: uuid.UUID | str,
        requested_by=None,
        now: datetime | None = None,
    ) -> ServiceResult[PayoutSchedule]:
        """
        Mark a paid booking as delivered and schedule the provider payout.

        Only the provider can complete, and not before the booked slot.
        Completing twice returns the existing schedule.
        """
        now = now or timezone.now()

        try:
            booking = Booking.objects.get(pk=booking_id)
        except Booking.DoesNotExist:
            return ServiceResult.failure("Booking not found", "NOT_FOUND")

        if requested_by is not None and booking.provider_id != requested_by.pk:
            return ServiceResult.failure("Only the provider can complete this booking", "NOT_OWNER")

        if booking.status == BookingStatus.COMPLETED:
            return cls.create_payout_schedule(booking, now)

        if booking.status != BookingStatus.CONFIRMED:
            return ServiceResult.failure(
                f"Cannot complete a {booking.status} booking",
                "INVALID_BOOKING_STATE",
            )

        if now < booking.scheduled_start():
            return ServiceResult.failure(
                "Booking cannot be completed before it starts",
                "BOOKING_NOT_STARTED",
            )

        hold = EscrowHold.objects.filter(booking=booking).first()
        if hold is None or hold.status != EscrowHoldStatus.HELD:
            return ServiceResult.failure("Booking funds are not held in escrow", "ESCROW_NOT_HELD")

        return cls.create_payout_schedule(booking, now)

    @classmethod
    def create_payout_schedule(
        cls,
        booking: Booking,
        now: datetime | None = None,
    ) -> ServiceResult[PayoutSchedule]:
        """
        Hold a completed booking's funds and schedule the provider payout.

        Idempotent: a booking that already has a schedule returns it.
        """
        now = now or timezone.now()
        existing = PayoutSchedule.objects.filter(booking=booking).first()
        if existing is not None:
            return ServiceResult.success(existing)

        if booking.status == BookingStatus.CANCELLED:
            return ServiceResult.failure("Cancelled bookings are not paid out", "BOOKING_CANCELLED")

        timing = PAYOUT_TIMING.get(booking.transaction_type, PAYOUT_TIMING[TransactionType.SERVICE])

        with transaction.atomic():
            booking = Booking.objects.select_for_update().get(pk=booking.pk)

            booking.status = BookingStatus.COMPLETED
            booking.completed_at = booking.completed_at or now
            completed_at = booking.completed_at

            hold = cls.hold_funds(booking, now)

            booking.escrow_status = EscrowStatus.HELD
            booking.save(update_fields=["status", "completed_at", "escrow_status", "updated_at"])

            eligible_for_payout_at = completed_at + timedelta(days=timing.cutoff_days)
            schedule = PayoutSchedule.objects.create(
                booking=booking,
                provider=booking.provider,
                escrow_hold=hold,
                transaction_type=booking.transaction_type,
                completed_at=completed_at,
                eligible_for_payout_at=eligible_for_payout_at,
                scheduled_payout_date=(
                    eligible_for_payout_at.date() + timedelta(days=timing.cycle_days)
                ),
                early_payout_eligible_at=completed_at + timedelta(days=timing.early_payout_days),
                payout_amount_cents=hold.provider_payout_cents,
            )

        cls.get_logger().info(
            "Payout schedule created",
            extra={
                "booking_id": str(booking.id),
                "payout_schedule_id": str(schedule.id),
                "payout_amount_cents": schedule.payout_amount_cents,
                "scheduled_payout_date": schedule.scheduled_payout_date.isoformat(),
            },
        )
        return ServiceResult.success(schedule)

    @classmethod
    def hold_funds(cls, booking: Booking, now: datetime | None = None) -> EscrowHold:
        """
        Put a paid booking's money in escrow.

        Idempotent per booking. The platform fee is fixed when the funds are
        held.
        """
        now = now or timezone.now()
        existing = EscrowHold.objects.filter(booking=booking).first()
        if existing is not None:
            return existing

        platform_fee = calculate_platform_fee(booking.price_cents)
        hold = EscrowHold.objects.create(
            booking=booking,
            customer=booking.customer,
            provider=booking.provider,
            amount_cents=booking.price_cents,
            platform_fee_cents=platform_fee,
            provider_payout_cents=booking.price_cents - platform_fee,
            currency=booking.currency,
            held_at=now,
            expires_at=now + timedelta(days=settings.ESCROW_DEFAULT_HOLD_DURATION_DAYS),
        )

        external = LedgerService.platform_account(AccountType.EXTERNAL_STRIPE, booking.currency)
        escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW, booking.currency)
        LedgerService.record_entry(
            RecordEntryParams(
                debit_account_id=external.id,
                credit_account_id=escrow.id,
                amount_cents=hold.amount_cents,
                entry_type=EntryType.PAYMENT_RECEIVED,
                idempotency_key=f"escrow_hold:{hold.id}",
                reference_type="escrow_hold",
                reference_id=hold.id,
                description=f"Booking {booking.id} funds held in escrow",
                created_by="escrow_settlement",
            )
        )
        Booking.objects.filter(pk=booking.pk).update(escrow_status=EscrowStatus.HELD, updated_at=now)
        return hold

    # =========================================================================
    # Early payout
    # =========================================================================

    @classmethod
    def request_early_payout(
        cls,
        schedule_id: uuid.UUID | str,
        requested_by=None,
        now: datetime | None = None,
    ) -> ServiceResult[PayoutSchedule]:
        """
        Ask for a payout before the regular date.

        The schedule moves to processing and settlement is queued after
        commit. Eligibility and disputes are checked again at settlement.
        """
        from payments.tasks import settle_early_payout

        now = now or timezone.now()

        with transaction.atomic():
            try:
                schedule = PayoutSchedule.objects.select_for_update().get(pk=schedule_id)
            except PayoutSchedule.DoesNotExist:
                return ServiceResult.failure("Payout schedule not found", "NOT_FOUND")

            if requested_by is not None and schedule.provider_id != requested_by.pk:
                return ServiceResult.failure(
                    "Only the provider can request an early payout",
                    "NOT_OWNER",
                )

            if now < schedule.early_payout_eligible_at:
                return ServiceResult.failure(
                    "Early payout is not available until "
                    f"{schedule.early_payout_eligible_at.isoformat()}",
                    "EARLY_PAYOUT_NOT_ELIGIBLE",
                )

            if not can_proceed(schedule.request_early_payout):
                return ServiceResult.failure(
                    f"Cannot request early payout for a {schedule.payout_status} payout",
                    "INVALID_PAYOUT_STATE",
                )

            schedule.request_early_payout()
            schedule.save()

            schedule_key = str(schedule.id)
            transaction.on_commit(lambda: settle_early_payout.delay(schedule_key))

        cls.get_logger().info(
            "Early payout requested",
            extra={"payout_schedule_id": str(schedule.id)},
        )
        return ServiceResult.success(schedule)

    @classmethod
    def release_early(
        cls,
        schedule_id: uuid.UUID | str,
        now: datetime | None = None,
    ) -> ServiceResult[EarlyPayoutResult]:
        """
        Pay a requested early payout into the provider's wallet.

        Checks, in order: the schedule is processing, the early payout
        window has opened, the booking has no open or under-review dispute,
        the escrow is still held. A dispute puts the schedule back to
        pending (committed) before rejecting. On success the hold release,
        schedule completion, wallet credit and booking escrow status commit
        together.
        """
        now = now or timezone.now()

        try:
            with DistributedLock(f"payout_schedule:{schedule_id}", ttl=cls.LOCK_TTL_SECONDS):
                return cls._release_early_locked(schedule_id, now)
        except LockAcquisitionError as e:
            cls.get_logger().warning(
                "Early payout already being settled",
                extra={"payout_schedule_id": str(schedule_id)},
            )
            return ServiceResult.from_exception(e)

    @classmethod
    def _release_early_locked(
        cls,
        schedule_id: uuid.UUID | str,
        now: datetime,
    ) -> ServiceResult[EarlyPayoutResult]:
        logger = cls.get_logger()

        with transaction.atomic():
            try:
                schedule = PayoutSchedule.objects.select_for_update().get(pk=schedule_id)
            except PayoutSchedule.DoesNotExist:
                return ServiceResult.failure("Payout schedule not found", "NOT_FOUND")

            if schedule.payout_status != PayoutStatus.PROCESSING:
                return ServiceResult.failure(
                    f"Payout is {schedule.payout_status}, expected processing",
                    "INVALID_PAYOUT_STATE",
                )

            if now < schedule.early_payout_eligible_at:
                return ServiceResult.failure(
                    "Early payout is not available yet",
                    "EARLY_PAYOUT_NOT_ELIGIBLE",
                )

            if Dispute.objects.filter(booking_id=schedule.booking_id).blocking_payout().exists():
                schedule.revert_early_request(reason=f"Early payout rejected: {ACTIVE_DISPUTES_MESSAGE}")
                schedule.save()
                transaction.on_commit(lambda: cls._notify_early_payout_rejected(schedule))
                logger.info(
                    "Early payout rejected, booking has active disputes",
                    extra={"payout_schedule_id": str(schedule.id), "booking_id": str(schedule.booking_id)},
                )
                return ServiceResult.failure(ACTIVE_DISPUTES_MESSAGE, "ACTIVE_DISPUTES")

            hold = EscrowHold.objects.select_for_update().get(pk=schedule.escrow_hold_id)
            if hold.status != EscrowHoldStatus.HELD:
                return ServiceResult.failure(
                    f"Escrow is {hold.status}, expected held",
                    "ESCROW_NOT_HELD",
                )

            hold.release()
            hold.save()
            schedule.complete()
            schedule.save()

            cls._record_payout_entries(schedule, hold)

            Booking.objects.filter(pk=schedule.booking_id).update(
                escrow_status=EscrowStatus.RELEASED,
                updated_at=now,
            )

            transaction.on_commit(lambda: cls._notify_early_payout_approved(schedule))

        logger.info(
            "Early payout released",
            extra={
                "payout_schedule_id": str(schedule.id),
                "provider_id": schedule.provider_id,
                "payout_amount_cents": schedule.payout_amount_cents,
            },
        )
        return ServiceResult.success(
            EarlyPayoutResult(success=True, payout_amount_cents=schedule.payout_amount_cents)
        )

    @classmethod
    def _record_payout_entries(cls, schedule: PayoutSchedule, hold: EscrowHold) -> None:
        escrow = LedgerService.platform_account(AccountType.PLATFORM_ESCROW, hold.currency)
        wallet = LedgerService.get_wallet(schedule.provider_id, hold.currency)

        entries = [
            RecordEntryParams(
                debit_account_id=escrow.id,
                credit_account_id=wallet.id,
                amount_cents=schedule.payout_amount_cents,
                entry_type=EntryType.PAYOUT,
                idempotency_key=f"early_payout:{schedule.id}",
                reference_type="payout_schedule",
                reference_id=schedule.id,
                description=f"Early payout for booking {schedule.booking_id}",
                created_by="escrow_settlement",
            )
        ]
        if hold.platform_fee_cents > 0:
            revenue = LedgerService.platform_account(AccountType.PLATFORM_REVENUE, hold.currency)
            entries.append(
                RecordEntryParams(
                    debit_account_id=escrow.id,
                    credit_account_id=revenue.id,
                    amount_cents=hold.platform_fee_cents,
                    entry_type=EntryType.FEE_COLLECTED,
                    idempotency_key=f"platform_fee:{hold.id}",
                    reference_type="escrow_hold",
                    reference_id=hold.id,
                    created_by="escrow_settlement",
                )
            )
        LedgerService.record_entries(entries)

    # =========================================================================
    # Notifications
    # =========================================================================

    @classmethod
    def _notify_early_payout_approved(cls, schedule: PayoutSchedule) -> None:
        amount = f"${schedule.payout_amount_cents / 100:.2f}"
        cls._send_notification(
            schedule,
            notification_type=NotificationType.EARLY_PAYOUT_APPROVED,
            title="Early Payout Approved",
            body=f"{amount} from your completed booking has been added to your wallet.",
            idempotency_key=f"early_payout_approved:{schedule.id}",
        )

    @classmethod
    def _notify_early_payout_rejected(cls, schedule: PayoutSchedule) -> None:
        cls._send_notification(
            schedule,
            notification_type=NotificationType.EARLY_PAYOUT_REJECTED,
            title="Early Payout Unavailable",
            body=(
                "Your early payout request could not be approved because the booking has "
                "an open dispute. The payout stays on its regular schedule."
            ),
            idempotency_key=None,
        )

    @classmethod
    def _send_notification(
        cls,
        schedule: PayoutSchedule,
        notification_type: str,
        title: str,
        body: str,
        idempotency_key: str | None,
    ) -> None:
        try:
            NotificationService.create_notification(
                recipient=schedule.provider,
                notification_type=notification_type,
                title=title,
                body=body,
                data={
                    "payout_schedule_id": str(schedule.id),
                    "booking_id": str(schedule.booking_id),
                    "payout_amount_cents": schedule.payout_amount_cents,
                },
                reference_id=str(schedule.id),
                idempotency_key=idempotency_key,
            )
        except Exception:
            cls.get_logger().exception(
                "Failed to send payout notification",
                extra={"payout_schedule_id": str(schedule.id), "type": notification_type},
            )


__all__ = [
    "EarlyPayoutResult",
    "EscrowSettlementService",
    "PAYOUT_TIMING",
    "calculate_platform_fee",
]
