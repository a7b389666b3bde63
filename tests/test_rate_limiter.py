from datetime import timedelta

import pytest

from coinedge.domain.models import RateLimitPolicy
from coinedge.errors import RateLimited
from coinedge.rate_limiter import RATE_LIMIT_POLICIES, RateLimiter, client_identifier


def test_presets():
    assert RATE_LIMIT_POLICIES["critical"].max_requests == 10
    assert RATE_LIMIT_POLICIES["standard"].max_requests == 30
    assert RATE_LIMIT_POLICIES["public"].max_requests == 60
    assert RATE_LIMIT_POLICIES["auth"].max_requests == 20
    assert RATE_LIMIT_POLICIES["auth"].window == timedelta(minutes=5)


def test_window_counts_down_then_blocks(clock):
    limiter = RateLimiter(RateLimitPolicy(max_requests=3), clock=clock)

    remaining = [limiter.check("a").remaining for _ in range(3)]
    blocked = limiter.check("a")

    assert remaining == [2, 1, 0]
    assert blocked.allowed is False
    assert blocked.remaining == 0


def test_window_resets_after_expiry(clock):
    limiter = RateLimiter(RateLimitPolicy(max_requests=1), clock=clock)

    assert limiter.check("a").allowed
    assert not limiter.check("a").allowed
    clock.advance(seconds=60)
    assert limiter.check("a").allowed


def test_hit_raises_with_retry_after(clock):
    limiter = RateLimiter(RateLimitPolicy(max_requests=1), clock=clock)
    limiter.hit("a")
    clock.advance(seconds=45)

    with pytest.raises(RateLimited) as exc:
        limiter.hit("a")

    assert exc.value.retry_after == 15
    assert exc.value.limit == 1
    assert exc.value.message == "Too many requests. Please try again later."


def test_headers(clock):
    limiter = RateLimiter(RateLimitPolicy(max_requests=5), clock=clock)
    headers = limiter.check("a").headers()

    assert headers["X-RateLimit-Limit"] == "5"
    assert headers["X-RateLimit-Remaining"] == "4"
    assert int(headers["X-RateLimit-Reset"]) == int((clock() + timedelta(seconds=60)).timestamp())


def test_expired_windows_are_pruned(clock):
    limiter = RateLimiter(RateLimitPolicy(max_requests=1), clock=clock)
    for i in range(1001):
        limiter.check(f"client-{i}")

    clock.advance(minutes=2)
    limiter.check("fresh")

    assert len(limiter._windows) == 1


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, "203.0.113.7"),
        ({"x-real-ip": "198.51.100.2"}, "198.51.100.2"),
        ({}, "unknown"),
    ],
)
def test_client_identifier(headers, expected):
    assert client_identifier(headers) == expected


def test_client_identifier_hashes_authorization():
    key = client_identifier({"Authorization": "Bearer secret-token"})

    assert key.startswith("auth-")
    assert len(key) == len("auth-") + 16
    assert "secret" not in key
