from __future__ import annotations

import asyncio

import pytest

from shirtforge.pacing import RequestPacer, RetryPolicy
from shirtforge.printify_api import PrintifyApiError


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_pacer_first_permit_is_immediate_then_spaced():
    fake = FakeTime()
    pacer = RequestPacer(interval_seconds=1.0, sleep=fake.sleep, clock=fake.clock)

    async def run() -> list[float]:
        delays = [await pacer.wait()]
        fake.now += 0.25
        delays.append(await pacer.wait())
        fake.now += 5
        delays.append(await pacer.wait())
        return delays

    assert asyncio.run(run()) == [0.0, 0.75, 0.0]
    assert fake.sleeps == [0.75]


def test_pacer_reset_makes_next_permit_immediate():
    fake = FakeTime()
    pacer = RequestPacer(interval_seconds=1.0, sleep=fake.sleep, clock=fake.clock)

    async def run() -> float:
        await pacer.wait()
        pacer.reset()
        return await pacer.wait()

    assert asyncio.run(run()) == 0.0


def test_retry_policy_backs_off_on_rate_limits_then_succeeds():
    fake = FakeTime()
    policy = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, sleep=fake.sleep)
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise PrintifyApiError(message="Printify API rate limited, try again later", status_code=429)
        return "ok"

    result = asyncio.run(
        policy.run(flaky, should_retry=lambda exc: isinstance(exc, PrintifyApiError) and exc.is_rate_limited)
    )

    assert result == "ok"
    assert calls["count"] == 3
    assert fake.sleeps == [2.0, 4.0]


def test_retry_policy_surfaces_non_retryable_errors_immediately():
    fake = FakeTime()
    policy = RetryPolicy(max_attempts=3, sleep=fake.sleep)

    async def broken() -> None:
        raise PrintifyApiError(message="Printify API call failed (400): bad", status_code=400)

    with pytest.raises(PrintifyApiError, match="400"):
        asyncio.run(policy.run(broken, should_retry=lambda exc: getattr(exc, "status_code", None) == 429))
    assert fake.sleeps == []


def test_retry_policy_gives_up_after_last_attempt():
    fake = FakeTime()
    policy = RetryPolicy(max_attempts=2, sleep=fake.sleep)

    async def always_limited() -> None:
        raise PrintifyApiError(message="limited", status_code=429)

    with pytest.raises(PrintifyApiError, match="limited"):
        asyncio.run(policy.run(always_limited, should_retry=lambda exc: True))
    assert fake.sleeps == [2.0]
