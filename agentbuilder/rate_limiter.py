"""
Fixed-window rate limiting on the ``limits`` library.

Counters live in ``memory://`` storage by default and in Redis when
REDIS_URL is set, so limits hold across workers.
"""

from __future__ import annotations

import datetime
import logging
import math
import time
from dataclasses import dataclass
from typing import Dict

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

from agentbuilder.config import settings
from agentbuilder.errors import RateLimitError

log = logging.getLogger("agentbuilder.rate_limiter")


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float  # epoch seconds
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        reset = datetime.datetime.fromtimestamp(self.reset_at, datetime.timezone.utc)
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": reset.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """One hit per ``check``; the window opens on a key's first hit."""

    def __init__(self, storage_uri: str = "memory://"):
        self.storage_uri = storage_uri
        self.storage = storage_from_string(storage_uri)
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, key: str, limit: int, window_seconds: float = 60) -> RateLimitResult:
        item = RateLimitItemPerSecond(int(limit), max(1, int(window_seconds)))
        allowed = self._strategy.hit(item, key)
        stats = self._strategy.get_window_stats(item, key)
        now = time.time()
        return RateLimitResult(
            allowed=allowed,
            remaining=stats.remaining,
            limit=int(limit),
            reset_at=stats.reset_time,
            retry_after=0 if allowed else max(1, math.ceil(stats.reset_time - now)),
        )

    def reset(self) -> None:
        self.storage.reset()


_limiter = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        if settings.redis_url:
            log.info("Using Redis rate limit storage")
            _limiter = RateLimiter(settings.redis_url)
        else:
            _limiter = RateLimiter()
    return _limiter


def set_rate_limiter(limiter) -> None:
    global _limiter
    _limiter = limiter


def check_rate_limit(key: str, limit: int, window_seconds: float = 60) -> RateLimitResult:
    return get_rate_limiter().check(key, limit, window_seconds)


def client_key(request: Request) -> str:
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}"
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = (
        forwarded.split(",")[0].strip()
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else "")
        or "unknown"
    )
    return f"ip:{ip}"


def rate_limit(scope: str, max_requests: int, window_seconds: float = 60):
    """FastAPI dependency enforcing a per-caller limit on a group of routes."""

    def _dependency(request: Request) -> RateLimitResult:
        result = check_rate_limit(f"{scope}:{client_key(request)}", max_requests, window_seconds)
        if not result.allowed:
            log.warning("Rate limit exceeded scope=%s key=%s", scope, client_key(request))
            raise RateLimitError(
                "Too many requests, please try again later.",
                details={"retryAfter": result.retry_after},
                headers=result.headers(),
            )
        return result

    return _dependency
