"""
Cache-backed circuit breaker for calls to external services.

State lives in the Django cache (Redis in deployment) so every Celery
worker and web process sees the same circuit. While the circuit is open,
callers fail fast instead of piling timeouts onto a struggling service.

States:
    - CLOSED: Normal operation, all requests pass through
    - OPEN: Service is failing, requests fail fast
    - HALF_OPEN: Recovery trial, a limited number of requests pass through

Usage:
    from core.circuit_breaker import CircuitBreaker, CircuitOpenError

    processor_circuit = CircuitBreaker("stripe", failure_threshold=5)

    try:
        with processor_circuit.call():
            intent = stripe.PaymentIntent.create(...)
    except CircuitOpenError:
        ...  # treat as processor unavailable

Only failures that say something about the service's health should be
recorded. A declined card is a healthy processor answering "no", so
callers record those as successes (see StripeAdapter).
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker instance."""

    failure_threshold: int = 5
    recovery_timeout: int = 60
    half_open_max_calls: int = 1
    cache_ttl: int = 3600


class CircuitOpenError(Exception):
    """
    Raised when attempting to call through an open circuit.

    Signals that the service is considered unavailable, not that an
    actual call failed.
    """


class CircuitBreaker:
    """
    Distributed circuit breaker using the Django cache backend.

    Attributes:
        name: Unique identifier, used as the cache key prefix
        config: Thresholds and timeouts
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
    ):
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            half_open_max_calls=half_open_max_calls,
        )
        self._state_key = f"circuit:{name}:state"
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"
        self._half_open_calls_key = f"circuit:{name}:half_open_calls"

    def is_available(self) -> bool:
        """
        Check if the circuit lets a call through.

        Moves an open circuit to half-open once the recovery timeout has
        elapsed. A cache outage fails open (returns True).
        """
        try:
            state = self._get_state()

            if state == CircuitState.OPEN:
                opened_at = cache.get(self._opened_at_key)
                if opened_at and (time.time() - opened_at) >= self.config.recovery_timeout:
                    self._set_state(CircuitState.HALF_OPEN)
                    cache.set(self._half_open_calls_key, 0, timeout=self.config.cache_ttl)
                    logger.info(
                        "Circuit breaker transitioning to half-open",
                        extra={"circuit": self.name},
                    )
                    self._incr(self._half_open_calls_key)
                    return True
                return False

            if state == CircuitState.HALF_OPEN:
                if cache.get(self._half_open_calls_key, 0) < self.config.half_open_max_calls:
                    self._incr(self._half_open_calls_key)
                    return True
                return False

            return True

        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        """Close a half-open circuit and reset the failure count."""
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)
                logger.info(
                    "Circuit breaker closed after successful recovery",
                    extra={"circuit": self.name},
                )
            cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        """Count a failure, opening the circuit at the threshold."""
        try:
            if self._get_state() == CircuitState.HALF_OPEN:
                self._open_circuit()
                logger.warning(
                    "Circuit breaker reopened after failed recovery attempt",
                    extra={"circuit": self.name},
                )
                return

            failures = self._incr(self._failures_key)
            if failures >= self.config.failure_threshold:
                self._open_circuit()
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.config.failure_threshold,
                    },
                )
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block, recording success or failure automatically.

        Raises:
            CircuitOpenError: If the circuit does not allow the call
        """
        if not self.is_available():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")

        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        """Force the circuit closed. Used by admins and tests."""
        self._set_state(CircuitState.CLOSED)
        cache.set(self._failures_key, 0, timeout=self.config.cache_ttl)
        cache.set(self._half_open_calls_key, 0, timeout=self.config.cache_ttl)
        logger.info("Circuit breaker manually reset", extra={"circuit": self.name})

    def get_status(self) -> dict:
        """Current state for health checks and monitoring."""
        try:
            return {
                "name": self.name,
                "state": self._get_state().value,
                "failure_count": cache.get(self._failures_key, 0),
                "failure_threshold": self.config.failure_threshold,
            }
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}

    # =========================================================================
    # Private cache operations
    # =========================================================================

    def _get_state(self) -> CircuitState:
        state_str = cache.get(self._state_key, CircuitState.CLOSED.value)
        try:
            return CircuitState(state_str)
        except ValueError:
            return CircuitState.CLOSED

    def _set_state(self, state: CircuitState) -> None:
        cache.set(self._state_key, state.value, timeout=self.config.cache_ttl)

    def _open_circuit(self) -> None:
        self._set_state(CircuitState.OPEN)
        cache.set(self._opened_at_key, time.time(), timeout=self.config.cache_ttl)

    def _incr(self, key: str) -> int:
        try:
            return cache.incr(key)
        except ValueError:
            # Key doesn't exist yet
            cache.set(key, 1, timeout=self.config.cache_ttl)
            return 1

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._get_state().value})"
