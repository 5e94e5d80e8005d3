"""
Redis-based distributed locks for payment operations.

Row locks (select_for_update) protect a single transaction. A distributed
lock protects a whole multi-step operation across processes, for example
an early payout that reads disputes, moves money and updates three
records.

Usage:
    from payments.locks import DistributedLock

    with DistributedLock(f"payout_schedule:{schedule_id}", ttl=30):
        EscrowSettlementService._release_early_locked(schedule_id, now)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL prevents deadlocks from crashed processes
        - Token-based ownership, so only the holder can release
        - Blocking and non-blocking acquisition modes

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Lock TTL in seconds
        blocking: If True, acquire() waits until the lock is free
        timeout: Maximum wait in seconds (blocking mode only)
    """

    # Atomic check-and-delete so we never release someone else's lock
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError: If the lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """Release the lock if we hold it. Safe to call more than once."""
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


__all__ = ["DistributedLock"]
