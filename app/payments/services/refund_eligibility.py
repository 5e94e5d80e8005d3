"""
Refund eligibility policy for booking cancellations.

evaluate_refund_eligibility is a pure function of the booking date, who
cancelled, the amount paid and the current time. The quote shown to a
customer before they confirm a cancellation and the amount paid out when
the refund is processed both come from here, so the function must give
the same answer for the same inputs.

Policy:
    Provider cancels              100%
    Customer cancels, 7+ days     100%
    Customer cancels, 3-6 days     50%
    Customer cancels, 1-2 days     25%
    Customer cancels, same day      0% (not eligible)

days_until_service counts whole calendar days between today and the
scheduled date, both taken at midnight in the local timezone of `now`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

from django.utils import timezone

from payments.state_machines import CancellingParty

NO_REFUND_REASON = "No refund — cancelling within 24 hours of service"

PROVIDER_CANCELLATION_POLICY = "Full refund (100%) - Provider cancelled the booking"

# (minimum days until service, refund percentage, policy text), highest first
CUSTOMER_REFUND_TIERS: tuple[tuple[int, int, str], ...] = (
    (7, 100, "Full refund (100%) - Cancelling 7+ days before booking"),
    (3, 50, "Partial refund (50%) - Cancelling 3-6 days before booking"),
    (1, 25, "Partial refund (25%) - Cancelling 1-2 days before booking"),
)

NO_REFUND_POLICY = "No refund - Cancelling less than 24 hours before booking"


@dataclass(frozen=True)
class RefundEligibility:
    """
    Refund quote for a cancellation.

    refund_amount_cents is always derived from original_amount_cents and
    refund_percentage, never stored on its own.
    """

    eligible: bool
    refund_percentage: int
    refund_amount_cents: int
    original_amount_cents: int
    days_until_service: int
    policy_text: str
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "refund_percentage": self.refund_percentage,
            "refund_amount_cents": self.refund_amount_cents,
            "original_amount_cents": self.original_amount_cents,
            "days_until_service": self.days_until_service,
            "policy_text": self.policy_text,
            "reason": self.reason,
        }


def calculate_refund_amount(original_amount_cents: int, refund_percentage: int) -> int:
    """Apply a percentage, rounding half up to the minor unit."""
    amount = Decimal(original_amount_cents) * Decimal(refund_percentage) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def days_until(scheduled_date: date, now: datetime) -> int:
    today = timezone.localdate(now) if timezone.is_aware(now) else now.date()
    scheduled_midnight = datetime.combine(scheduled_date, time.min)
    today_midnight = datetime.combine(today, time.min)
    return (scheduled_midnight - today_midnight).days


def evaluate_refund_eligibility(
    scheduled_date: date,
    cancelling_party: str,
    original_amount_cents: int,
    now: datetime,
    scheduled_time: time | None = None,
) -> RefundEligibility:
    """
    Quote the refund for a cancellation.

    Args:
        scheduled_date: Date the service is booked for
        cancelling_party: CancellingParty.CUSTOMER or CancellingParty.PROVIDER
        original_amount_cents: Amount the customer paid
        now: Moment of cancellation
        scheduled_time: Booked time of day. Tiers are day based, so it does
            not change the result; accepted so callers can pass the whole
            booking slot.

    Raises:
        ValueError: If the amount is negative or the party is unknown
    """
    if original_amount_cents < 0:
        raise ValueError("original_amount_cents cannot be negative")
    if cancelling_party not in CancellingParty.values:
        raise ValueError(f"Unknown cancelling party: {cancelling_party}")

    days = days_until(scheduled_date, now)

    if cancelling_party == CancellingParty.PROVIDER:
        return RefundEligibility(
            eligible=True,
            refund_percentage=100,
            refund_amount_cents=original_amount_cents,
            original_amount_cents=original_amount_cents,
            days_until_service=days,
            policy_text=PROVIDER_CANCELLATION_POLICY,
        )

    for min_days, percentage, policy_text in CUSTOMER_REFUND_TIERS:
        if days >= min_days:
            return RefundEligibility(
                eligible=True,
                refund_percentage=percentage,
                refund_amount_cents=calculate_refund_amount(original_amount_cents, percentage),
                original_amount_cents=original_amount_cents,
                days_until_service=days,
                policy_text=policy_text,
            )

    return RefundEligibility(
        eligible=False,
        refund_percentage=0,
        refund_amount_cents=0,
        original_amount_cents=original_amount_cents,
        days_until_service=days,
        policy_text=NO_REFUND_POLICY,
        reason=NO_REFUND_REASON,
    )


__all__ = [
    "CUSTOMER_REFUND_TIERS",
    "NO_REFUND_REASON",
    "RefundEligibility",
    "calculate_refund_amount",
    "days_until",
    "evaluate_refund_eligibility",
]
