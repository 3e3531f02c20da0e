"""Rate limiting for the waitlist API.

``SignupRateLimiter`` throttles the public signup endpoints with a fixed
window per client IP. Its windows live in process memory, so limits are
per instance and reset on restart; running several instances multiplies
the effective quota.

The slowapi ``limiter`` guards the admin endpoints.
"""

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from slowapi import Limiter
from starlette.requests import Request

from healthscan.logging_config import get_logger
from healthscan.settings import settings

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"

# Checked in order; proxies put the originating address first
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def trusted_proxies() -> set[str]:
    return {proxy.strip() for proxy in settings.trusted_proxies.split(",") if proxy.strip()}


def client_ip(request: Request) -> str:
    """Originating IP of request.

    Forwarding headers are only read when the socket peer is a trusted
    proxy; any other client could set them to dodge the signup limit.
    """
    peer = request.client.host if request.client and request.client.host else None
    if peer is not None and peer in trusted_proxies():
        for header in CLIENT_IP_HEADERS:
            value = request.headers.get(header)
            if value:
                first = value.split(",")[0].strip()
                if first:
                    return first
    return peer or UNKNOWN_CLIENT


@dataclass
class RateLimitDecision:
    """Result of one rate limit check."""

    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


@dataclass
class _Window:
    count: int
    reset_at: float


class SignupRateLimiter:
    """Fixed-window request counter keyed by client IP."""

    def __init__(
        self,
        limit: int | None = None,
        window_seconds: int | None = None,
        sweep_probability: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.limit = limit if limit is not None else settings.signup_rate_limit
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.signup_rate_window_seconds
        )
        self.sweep_probability = (
            sweep_probability
            if sweep_probability is not None
            else settings.signup_rate_sweep_probability
        )
        self._clock = clock
        self._rng = rng
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, ip: str | None) -> RateLimitDecision:
        """Count one request from ip and decide whether to allow it."""
        key = ip or UNKNOWN_CLIENT
        with self._lock:
            now = self._clock()
            if self._rng() < self.sweep_probability:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return RateLimitDecision(allowed=True, remaining=max(self.limit - 1, 0))

            window.count += 1
            if window.count > self.limit:
                retry_after = max(1, math.ceil(window.reset_at - now))
                logger.warning("signup_rate_limited", ip=key, retry_after_seconds=retry_after)
                return RateLimitDecision(
                    allowed=False, remaining=0, retry_after_seconds=retry_after
                )
            return RateLimitDecision(allowed=True, remaining=self.limit - window.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("rate_limit_windows_swept", removed=len(expired))


# Shared instances
signup_limiter = SignupRateLimiter()

# Admin endpoints - disabled in non-production environments
limiter = Limiter(
    key_func=client_ip,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)

ADMIN_RATE_LIMIT = "30/minute"
