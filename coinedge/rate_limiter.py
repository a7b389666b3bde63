"""In-memory fixed-window rate limiting keyed by client identifier.

Counters live for the process lifetime only and are lost on restart.
"""

import hashlib
import math
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from coinedge.domain.models import RateLimitPolicy
from coinedge.errors import RateLimited

RATE_LIMIT_POLICIES = {
    # Orders and transfers
    "critical": RateLimitPolicy(max_requests=10),
    "standard": RateLimitPolicy(max_requests=30),
    # Public read-only endpoints
    "public": RateLimitPolicy(max_requests=60),
    "auth": RateLimitPolicy(max_requests=20, window=timedelta(minutes=5)),
}

PRUNE_THRESHOLD = 1000


@dataclass
class _Window:
    count: int
    reset_at: datetime


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    def headers(self) -> dict[str, str]:
        """Render X-RateLimit-* headers for client backoff."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at.timestamp())),
        }


class RateLimiter:
    """Allows policy.max_requests per client within each fixed window."""

    def __init__(
        self,
        policy: RateLimitPolicy,
        clock: Callable[[], datetime] | None = None,
    ):
        self.policy = policy
        self._clock = clock or (lambda: datetime.now(UTC))
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    @classmethod
    def preset(
        cls, name: str, clock: Callable[[], datetime] | None = None
    ) -> "RateLimiter":
        return cls(RATE_LIMIT_POLICIES[name], clock=clock)

    def check(self, client_id: str) -> RateLimitResult:
        """Count a request for client_id and report whether it is allowed."""
        now = self._clock()
        limit = self.policy.max_requests

        with self._lock:
            if len(self._windows) > PRUNE_THRESHOLD:
                self._prune(now)

            window = self._windows.get(client_id)

            if window is None or now >= window.reset_at:
                window = _Window(count=1, reset_at=now + self.policy.window)
                self._windows[client_id] = window
                return RateLimitResult(True, limit, limit - 1, window.reset_at)

            if window.count >= limit:
                return RateLimitResult(False, limit, 0, window.reset_at)

            window.count += 1
            return RateLimitResult(True, limit, limit - window.count, window.reset_at)

    def hit(self, client_id: str) -> RateLimitResult:
        """Like check(), but raises RateLimited when the window is exhausted."""
        result = self.check(client_id)
        if not result.allowed:
            retry_after = math.ceil((result.reset_at - self._clock()).total_seconds())
            raise RateLimited(
                limit=result.limit,
                remaining=0,
                reset_at=result.reset_at,
                retry_after=max(retry_after, 0),
            )
        return result

    def _prune(self, now: datetime) -> None:
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for key in expired:
            del self._windows[key]


def client_identifier(headers: Mapping[str, str]) -> str:
    """
    Derive a rate-limit key from request headers.

    Prefers the first X-Forwarded-For hop, then X-Real-IP, then a hash of the
    Authorization header.
    """
    normalized = {k.lower(): v for k, v in headers.items()}

    forwarded_for = normalized.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = normalized.get("x-real-ip")
    if real_ip:
        return real_ip

    auth = normalized.get("authorization")
    if auth:
        return "auth-" + hashlib.sha256(auth.encode("utf-8")).hexdigest()[:16]

    return "unknown"
