from __future__ import annotations

import math
import time
from typing import Callable

from fastapi import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from shirtforge.cache import TTLCache

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
        "font-src 'self' https://fonts.gstatic.com",
        "img-src 'self' data: https: blob:",
        "script-src 'self' https://js.stripe.com",
        "connect-src 'self' https://api.stripe.com https://api.printify.com",
        "frame-src 'self' https://js.stripe.com",
    ]
)

SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
}


class RateLimitExceeded(RuntimeError):
    def __init__(self, *, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class FixedWindowRateLimiter:
    """Counts requests per client key in fixed windows; the window starts at the first hit."""

    def __init__(
        self,
        *,
        name: str,
        limit: int,
        window_seconds: float,
        message: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._clock = clock
        self._windows = TTLCache(default_ttl_seconds=window_seconds, clock=clock)
        self._last_sweep = clock()

    def _sweep(self) -> None:
        # at most one full scan per window
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._windows.purge_expired()
            self._last_sweep = now

    def hit(self, key: str) -> None:
        self._sweep()
        started_at = self._windows.stored_at(key)
        count = self._windows.get(key)
        if count is None or started_at is None:
            self._windows.set(key, 1)
            return
        if count >= self.limit:
            remaining = self.window_seconds - (self._clock() - started_at)
            raise RateLimitExceeded(message=self.message, retry_after=max(1, math.ceil(remaining)))
        self._windows.replace(key, count + 1)

    def reset(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limited(limiter_name: str) -> Callable[[Request], None]:
    def dependency(request: Request) -> None:
        limiter: FixedWindowRateLimiter = request.app.state.rate_limiters[limiter_name]
        limiter.hit(client_key(request))

    dependency.__name__ = f"rate_limit_{limiter_name}"
    return dependency


class SecurityHeadersMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present = {name.lower() for name, _ in headers}
                for name, value in SECURITY_HEADERS.items():
                    encoded = name.lower().encode("latin-1")
                    if encoded not in present:
                        headers.append((encoded, value.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
