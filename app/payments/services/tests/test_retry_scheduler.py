"""Tests for retry backoff."""

from datetime import datetime, timedelta, timezone

import pytest

from payments.services.retry_scheduler import backoff_hours, compute_next_retry

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestBackoffHours:
    @pytest.mark.parametrize("retry_count,hours", [(0, 1), (1, 4), (2, 16), (3, 64)])
    def test_powers_of_four(self, retry_count, hours):
        assert backoff_hours(retry_count) == hours


class TestComputeNextRetry:
    def test_first_failure_retries_after_one_hour(self):
        decision = compute_next_retry(retry_count=0, max_retries=3, now=NOW)

        assert decision.should_retry is True
        assert decision.next_retry_at == NOW + timedelta(hours=1)

    def test_second_failure_retries_after_four_hours(self):
        decision = compute_next_retry(retry_count=1, max_retries=3, now=NOW)

        assert decision.should_retry is True
        assert decision.next_retry_at == NOW + timedelta(hours=4)

    def test_third_failure_stops(self):
        decision = compute_next_retry(retry_count=2, max_retries=3, now=NOW)

        assert decision.should_retry is False
        assert decision.next_retry_at is None

    def test_max_retries_of_one_never_retries(self):
        assert compute_next_retry(retry_count=0, max_retries=1, now=NOW).should_retry is False

    def test_higher_limit_allows_longer_backoff(self):
        decision = compute_next_retry(retry_count=3, max_retries=5, now=NOW)

        assert decision.next_retry_at == NOW + timedelta(hours=64)

    def test_negative_retry_count_rejected(self):
        with pytest.raises(ValueError):
            compute_next_retry(retry_count=-1, max_retries=3, now=NOW)
