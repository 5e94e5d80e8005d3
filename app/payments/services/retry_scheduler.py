"""
Retry scheduling for failed recurring charges.

Backoff is exponential with base 4, measured in hours and computed from the
retry count *before* it is incremented:

    retry_count  ->  delay
    0                1 hour
    1                4 hours
    2                16 hours

A retry is scheduled only while retry_count + 1 < max_retries. With the
default max_retries of 3 the record fails on its third failed attempt.

The scheduler is pure. It never increments retry_count; the reconciliation
service does that in the same transaction that stores next_retry_at.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

BACKOFF_BASE = 4


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    next_retry_at: datetime | None = None


def backoff_hours(retry_count: int) -> int:
    return BACKOFF_BASE**retry_count


def compute_next_retry(retry_count: int, max_retries: int, now: datetime) -> RetryDecision:
    """
    Decide whether a failed attempt gets another try, and when.

    Args:
        retry_count: Retries already scheduled for the record
        max_retries: Policy bound for the record
        now: Time of the failure

    Returns:
        RetryDecision with next_retry_at set only when should_retry is True
    """
    if retry_count < 0:
        raise ValueError("retry_count cannot be negative")

    if retry_count + 1 >= max_retries:
        return RetryDecision(should_retry=False)

    return RetryDecision(
        should_retry=True,
        next_retry_at=now + timedelta(hours=backoff_hours(retry_count)),
    )


__all__ = ["BACKOFF_BASE", "RetryDecision", "backoff_hours", "compute_next_retry"]
