"""
Shared token bucket gating outbound GitHub requests.

All tracker workers draw from one bucket; workers block on the bucket, never
on each other.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from .errors import Cancelled


class RateLimiter:
    """Token bucket with ``rate`` tokens per second and ``burst`` capacity."""

    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> float:
        """
        Take a token if one is available.

        Returns:
            0.0 when a token was taken, otherwise the seconds to wait before
            the next token is due
        """
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def acquire(self, cancel_event: threading.Event | None = None) -> None:
        """Block until a token is available.

        Raises:
            Cancelled: if ``cancel_event`` is set while waiting
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled("Cancelled while waiting for rate limit")
            wait = self.try_acquire()
            if wait == 0.0:
                return
            if cancel_event is not None:
                cancel_event.wait(wait)
            else:
                time.sleep(wait)
