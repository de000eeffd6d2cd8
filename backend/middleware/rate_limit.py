"""
Per-client throttling for the storefront's public endpoints.

/api/orders, /api/payment-cancelled and the checkout preference endpoint are
called straight from the shopper's browser without authentication, so each
(client, path) pair gets a fixed budget per sliding window.

State lives in process memory; behind several workers each one counts
separately.
"""
import logging
import time
from collections import defaultdict, deque

from fastapi import Request

from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window counter keyed by an arbitrary string."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._hits: dict[str, deque] = defaultdict(deque)

    def _cleanup(self, key: str, window_seconds: int):
        hits = self._hits[key]
        cutoff = self._clock() - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Count a hit for `key`; False once the window is full (the hit is not counted)."""
        self._cleanup(key, window_seconds)
        hits = self._hits[key]
        if len(hits) >= max_requests:
            return False
        hits.append(self._clock())
        return True

    def remaining(self, key: str, max_requests: int, window_seconds: int) -> int:
        self._cleanup(key, window_seconds)
        return max(0, max_requests - len(self._hits[key]))

    def reset(self):
        self._hits.clear()


_limiter = RateLimiter()


def reset_rate_limits():
    """Forget all recorded hits (test isolation)."""
    _limiter.reset()


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    Dependency factory.

    Usage:
        @router.post("/payment-cancelled", dependencies=[Depends(rate_limit(10, 60))])
    """
    async def _enforce(request: Request):
        client = client_key(request)
        key = f"{client}:{request.url.path}"
        if _limiter.check(key, max_requests, window_seconds):
            return

        logger.warning(f"Throttled {client} on {request.url.path} ({max_requests} per {window_seconds}s)")
        raise RateLimitError(
            f"Too many requests: at most {max_requests} every {window_seconds} seconds",
            details={"limit": max_requests, "windowSeconds": window_seconds},
            headers={
                "Retry-After": str(window_seconds),
                "X-RateLimit-Limit": str(max_requests),
                "X-RateLimit-Remaining": str(_limiter.remaining(key, max_requests, window_seconds)),
            },
        )

    return _enforce
