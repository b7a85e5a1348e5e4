"""Tests for the classifier rate limiter."""

import threading

import pytest

from intel_triage.errors import RateLimitWait
from intel_triage.processors.ai import RateLimiter


class FakeTime:
    def __init__(self):
        self.now = 0.0

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class TestRateLimiter:
    def test_sliding_window(self):
        t = FakeTime()
        limiter = RateLimiter(3, 60.0, 0.0, clock=t.clock, sleep=t.sleep)
        dispatched = []

        for _ in range(5):
            limiter.acquire()
            dispatched.append(t.now)

        assert dispatched == [0, 0, 0, 60, 60]

    def test_try_acquire_reports_wait(self):
        t = FakeTime()
        limiter = RateLimiter(2, 60.0, 0.0, clock=t.clock, sleep=t.sleep)
        limiter.try_acquire()
        t.now = 10.0
        limiter.try_acquire()

        with pytest.raises(RateLimitWait) as excinfo:
            limiter.try_acquire()

        assert excinfo.value.wait_seconds == pytest.approx(50.0)

    def test_spacing_between_dispatches(self):
        t = FakeTime()
        limiter = RateLimiter(50, 60.0, 1.2, clock=t.clock, sleep=t.sleep)
        limiter.acquire()

        waited = limiter.acquire()

        assert waited == pytest.approx(1.2)
        assert t.now == pytest.approx(1.2)

    def test_status(self):
        t = FakeTime()
        limiter = RateLimiter(2, 60.0, 0.0, clock=t.clock, sleep=t.sleep)
        limiter.acquire()
        limiter.acquire()

        status = limiter.status()

        assert status["requests_in_window"] == 2
        assert status["max_requests"] == 2
        assert status["next_slot_in"] == pytest.approx(60.0)

    def test_rejects_non_positive_cap(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_concurrent_callers_never_exceed_cap(self):
        limiter = RateLimiter(5, 60.0, 0.0)
        admitted = []
        lock = threading.Lock()
        start = threading.Event()

        def call():
            start.wait()
            try:
                limiter.try_acquire()
            except RateLimitWait:
                return
            with lock:
                admitted.append(1)

        threads = [threading.Thread(target=call) for _ in range(10)]
        for th in threads:
            th.start()
        start.set()
        for th in threads:
            th.join()

        assert len(admitted) == 5
