from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


class RequestPacer:
    """Fixed-interval scheduler: successive ``wait()`` calls return at least ``interval`` apart."""

    def __init__(
        self,
        *,
        interval_seconds: float,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._clock = clock
        self._last_permit: float | None = None

    async def wait(self) -> float:
        """Block until the next permit is due. Returns the delay that was applied."""
        delay = 0.0
        if self._last_permit is not None:
            elapsed = self._clock() - self._last_permit
            delay = max(0.0, self.interval_seconds - elapsed)
        if delay > 0:
            await self._sleep(delay)
        self._last_permit = self._clock()
        return delay

    def reset(self) -> None:
        self._last_permit = None


class RetryPolicy:
    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        # attempt is 1-based: 2s, 4s, 8s ... with the default base of 1s
        return self.base_delay_seconds * (2**attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        should_retry: Callable[[Exception], bool],
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retrying after retryable failure",
                    extra={"attempt": attempt, "delay_seconds": delay, "error": str(exc)},
                )
                await self._sleep(delay)
                attempt += 1
