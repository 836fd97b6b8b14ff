from __future__ import annotations

import threading
import time
from typing import Callable


class TokenBucket:
    """Token bucket shared by all workers of a benchmark run.

    The bucket starts full and refills continuously at ``rate`` tokens per
    second up to ``capacity``. Waiters reserve their tokens under the lock and
    sleep for the deficit outside of it, so the balance may go negative while
    callers are queued.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("TokenBucket rate must be > 0")
        if capacity < 1:
            raise ValueError("TokenBucket capacity must be >= 1")
        self._rate = float(rate)
        self._capacity = int(capacity)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._updated_at = clock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> int:
        return self._capacity

    def wait(self, count: int = 1, cancel: threading.Event | None = None) -> float:
        """Block until ``count`` tokens are granted; return the seconds slept.

        When ``cancel`` is given the sleep ends as soon as it is set. The
        reserved tokens are not handed back.
        """
        if count < 1:
            raise ValueError("TokenBucket.wait count must be >= 1")
        with self._lock:
            self._refill()
            self._tokens -= count
            deficit = -self._tokens
        if deficit <= 0:
            return 0.0
        delay = deficit / self._rate
        if cancel is not None:
            cancel.wait(delay)
        else:
            self._sleep(delay)
        return delay

    def take_available(self, count: int) -> int:
        if count < 1:
            raise ValueError("TokenBucket.take_available count must be >= 1")
        with self._lock:
            self._refill()
            granted = min(count, max(int(self._tokens), 0))
            self._tokens -= granted
        return granted

    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._updated_at = now
        self._tokens = min(self._tokens + elapsed * self._rate, float(self._capacity))
