"""
Tests for the in-memory rate limiter.

Tests: sliding window with an injected clock, client keys, and the
rate_limit dependency on a real endpoint.
"""
import pytest
from starlette.requests import Request

from middleware.rate_limit import RateLimiter, client_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_request(headers=None, client=("203.0.113.7", 50000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/payment-cancelled",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestRateLimiter:

    @pytest.mark.unit
    def test_allows_requests_under_limit(self):
        limiter = RateLimiter()
        for _ in range(5):
            assert limiter.check("k", max_requests=5, window_seconds=60) is True

    @pytest.mark.unit
    def test_blocks_requests_over_limit(self):
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("k", max_requests=3, window_seconds=60)
        assert limiter.check("k", max_requests=3, window_seconds=60) is False

    @pytest.mark.unit
    def test_different_keys_independent(self):
        limiter = RateLimiter()
        for _ in range(3):
            limiter.check("10.0.0.1:/api/orders", max_requests=3, window_seconds=60)
        assert limiter.check("10.0.0.1:/api/orders", max_requests=3, window_seconds=60) is False
        assert limiter.check("10.0.0.2:/api/orders", max_requests=3, window_seconds=60) is True

    @pytest.mark.unit
    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", max_requests=2, window_seconds=60)
        clock.now += 30
        limiter.check("k", max_requests=2, window_seconds=60)
        assert limiter.check("k", max_requests=2, window_seconds=60) is False

        clock.now += 31  # first hit has left the window
        assert limiter.check("k", max_requests=2, window_seconds=60) is True
        assert limiter.check("k", max_requests=2, window_seconds=60) is False

    @pytest.mark.unit
    def test_rejected_hits_are_not_counted(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", max_requests=1, window_seconds=10)
        for _ in range(5):
            limiter.check("k", max_requests=1, window_seconds=10)

        clock.now += 11
        assert limiter.check("k", max_requests=1, window_seconds=10) is True

    @pytest.mark.unit
    def test_remaining(self):
        limiter = RateLimiter()
        assert limiter.remaining("k", max_requests=5, window_seconds=60) == 5
        limiter.check("k", max_requests=5, window_seconds=60)
        assert limiter.remaining("k", max_requests=5, window_seconds=60) == 4
        for _ in range(10):
            limiter.check("k", max_requests=5, window_seconds=60)
        assert limiter.remaining("k", max_requests=5, window_seconds=60) == 0

    @pytest.mark.unit
    def test_reset(self):
        limiter = RateLimiter()
        limiter.check("once", max_requests=1, window_seconds=60)
        limiter.reset()
        assert limiter.check("once", max_requests=1, window_seconds=60) is True


class TestClientKey:

    @pytest.mark.unit
    def test_socket_peer(self):
        assert client_key(make_request()) == "203.0.113.7"

    @pytest.mark.unit
    def test_forwarded_for_first_hop(self):
        request = make_request({"X-Forwarded-For": "190.85.1.2, 10.0.0.5"})
        assert client_key(request) == "190.85.1.2"

    @pytest.mark.unit
    def test_no_client(self):
        assert client_key(make_request(client=None)) == "unknown"


class TestRateLimitDependency:

    @pytest.mark.api
    async def test_payment_cancelled_is_throttled(self, client):
        body = {"orderNumber": "ORD-UNKNOWN"}
        for _ in range(10):
            response = await client.post("/api/payment-cancelled", json=body)
            assert response.status_code == 404

        response = await client.post("/api/payment-cancelled", json=body)

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "rate_limited"
        assert error["details"] == {"limit": 10, "windowSeconds": 60}
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.api
    async def test_clients_are_throttled_separately(self, client):
        body = {"orderNumber": "ORD-UNKNOWN"}
        for _ in range(10):
            await client.post("/api/payment-cancelled", json=body, headers={"X-Forwarded-For": "190.85.1.2"})

        blocked = await client.post("/api/payment-cancelled", json=body, headers={"X-Forwarded-For": "190.85.1.2"})
        other = await client.post("/api/payment-cancelled", json=body, headers={"X-Forwarded-For": "181.49.0.9"})

        assert blocked.status_code == 429
        assert other.status_code == 404
