"""Rate limiting using in-memory fixed-window counters.

Enforces per-client request limits keyed by client IP. Each client gets
a window that starts on its first request; once the window duration has
elapsed the counter resets. Across a window boundary a client can get up
to twice the nominal limit through, which is accepted.

State is process-local: several instances behind a load balancer each
enforce their own quota.

Returns standard rate limit metadata for response headers:
- X-RateLimit-Limit
- X-RateLimit-Remaining
- X-RateLimit-Reset
"""

import asyncio
import math
import time
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from src.logging.audit import get_audit_logger

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass
class RateWindow:
    window_start: float
    count: int = 0


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: float


class FixedWindowRateLimiter:
    """Per-client fixed-window counter guarded by a single asyncio lock."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, RateWindow] = {}
        self._lock = asyncio.Lock()

    async def check(self, client_key: str) -> RateLimitResult:
        """Count one request for client_key and decide whether it may pass."""
        async with self._lock:
            now = time.monotonic()
            window = self._windows.get(client_key)
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateWindow(window_start=now)
                self._windows[client_key] = window

            reset = round(window.window_start + self.window_seconds - now, 1)

            if window.count >= self.max_requests:
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_seconds=reset,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - window.count,
                reset_seconds=reset,
            )

    async def purge_expired(self) -> int:
        """Drop windows whose duration has elapsed. Returns number removed."""
        async with self._lock:
            now = time.monotonic()
            stale = [
                key for key, window in self._windows.items()
                if now - window.window_start >= self.window_seconds
            ]
            for key in stale:
                del self._windows[key]
            return len(stale)

    def reset(self, client_key: str) -> None:
        """Clear rate limit state for a client."""
        self._windows.pop(client_key, None)

    def __len__(self) -> int:
        return len(self._windows)


def client_identity(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_seconds)),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests over quota with 429 before any route handler runs."""

    def __init__(self, app, limiter: FixedWindowRateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        client_ip = client_identity(request)
        result = await self.limiter.check(client_ip)
        headers = _rate_limit_headers(result)

        if not result.allowed:
            get_audit_logger().warning(
                "Rate limit exceeded",
                extra={"audit_data": {
                    "client_ip": client_ip,
                    "path": request.url.path,
                    "rate_limit": result.limit,
                    "retry_after": result.reset_seconds,
                }},
            )
            return PlainTextResponse(
                RATE_LIMIT_MESSAGE,
                status_code=429,
                headers={"Retry-After": str(math.ceil(result.reset_seconds)), **headers},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
