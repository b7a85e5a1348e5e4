from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from ...errors import RateLimitWait
from ...utils.logging import get_logger

logger = get_logger("triage.ai.rate_limit")


class RateLimiter:
    """Sliding-window limiter shared by every classification caller.

    At most ``max_requests`` dispatches are admitted in any rolling
    ``window`` seconds, and consecutive dispatches are at least ``spacing``
    seconds apart even below the cap. The capacity check and the recording
    of the dispatch happen under one lock.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window: float = 60.0,
        spacing: float = 1.2,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.window = window
        self.spacing = spacing
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._dispatched: Deque[float] = deque()
        self._last: Optional[float] = None

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        while self._dispatched and self._dispatched[0] <= cutoff:
            self._dispatched.popleft()

    def _wait_needed(self, now: float) -> float:
        wait = 0.0
        if len(self._dispatched) >= self.max_requests:
            wait = self._dispatched[0] + self.window - now
        if self._last is not None and self.spacing > 0:
            wait = max(wait, self._last + self.spacing - now)
        return wait

    def try_acquire(self) -> None:
        """Record a dispatch now or raise ``RateLimitWait`` with the delay needed."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            wait = self._wait_needed(now)
            if wait > 0:
                raise RateLimitWait(wait)
            self._dispatched.append(now)
            self._last = now

    def acquire(self) -> float:
        """Block until a dispatch slot is free; returns the seconds waited."""
        waited = 0.0
        while True:
            try:
                self.try_acquire()
                if waited:
                    logger.debug("Rate limiter admitted request after %.2fs", waited)
                return waited
            except RateLimitWait as wait:
                self._sleep(wait.wait_seconds)
                waited += wait.wait_seconds

    def status(self) -> Dict[str, float]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            return {
                "requests_in_window": len(self._dispatched),
                "max_requests": self.max_requests,
                "window_seconds": self.window,
                "next_slot_in": max(0.0, self._wait_needed(now)),
            }
