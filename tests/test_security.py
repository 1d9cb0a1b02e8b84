from __future__ import annotations

import pytest

from shirtforge.security import FixedWindowRateLimiter, RateLimitExceeded


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _limiter(clock: FakeClock, limit: int = 3) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        name="payment",
        limit=limit,
        window_seconds=900,
        message="Too many payment attempts, please try again later.",
        clock=clock,
    )


def test_requests_within_limit_pass():
    limiter = _limiter(FakeClock())

    for _ in range(3):
        limiter.hit("203.0.113.7")


def test_request_over_limit_reports_time_left_in_window():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(3):
        limiter.hit("203.0.113.7")

    clock.now = 100.4
    with pytest.raises(RateLimitExceeded, match="Too many payment attempts") as excinfo:
        limiter.hit("203.0.113.7")

    assert excinfo.value.retry_after == 800


def test_clients_are_counted_separately():
    limiter = _limiter(FakeClock(), limit=1)
    limiter.hit("203.0.113.7")

    limiter.hit("198.51.100.2")
    with pytest.raises(RateLimitExceeded):
        limiter.hit("203.0.113.7")


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = _limiter(clock, limit=1)
    limiter.hit("203.0.113.7")

    clock.now = 901
    limiter.hit("203.0.113.7")
    with pytest.raises(RateLimitExceeded):
        limiter.hit("203.0.113.7")


def test_reset_clears_all_windows():
    limiter = _limiter(FakeClock(), limit=1)
    limiter.hit("203.0.113.7")

    limiter.reset()

    limiter.hit("203.0.113.7")


def test_windows_of_clients_that_never_return_are_swept():
    clock = FakeClock()
    limiter = _limiter(clock)
    for index in range(50):
        limiter.hit(f"198.51.100.{index}")
    assert len(limiter) == 50

    clock.now = 1000
    limiter.hit("203.0.113.7")

    assert len(limiter) == 1
