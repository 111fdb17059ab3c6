"""Fixed-window rate limiting primitives keyed by IP, user or token."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
import time
from typing import Dict, Protocol, Tuple

from radio444.core.config import Settings, get_settings
from radio444.storage.redis_client import get_client, redis_key


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


class RateLimiter(Protocol):
    def check(self, *, identifier: str) -> RateLimitDecision:
        """Return a decision for this identifier."""


def _validate_window(requests_per_window: int, window_seconds: int) -> None:
    if requests_per_window <= 0:
        raise ValueError("requests_per_window must be positive")
    if window_seconds <= 0:
        raise ValueError("window_seconds must be positive")


class InMemoryRateLimiter:
    def __init__(self, *, requests_per_window: int, window_seconds: int) -> None:
        _validate_window(requests_per_window, window_seconds)
        self._limit = requests_per_window
        self._window = window_seconds
        self._lock = Lock()
        self._store: Dict[Tuple[str, int], int] = {}

    def check(self, *, identifier: str) -> RateLimitDecision:
        now = int(time.time())
        window_id = now // self._window
        reset_seconds = self._window - (now % self._window)
        key = (identifier, window_id)

        with self._lock:
            # Keep current and previous windows only.
            stale_keys = [item for item in self._store if item[1] < window_id - 1]
            for stale in stale_keys:
                self._store.pop(stale, None)

            count = int(self._store.get(key, 0)) + 1
            self._store[key] = count

        return RateLimitDecision(
            allowed=count <= self._limit,
            limit=self._limit,
            remaining=max(self._limit - count, 0),
            reset_seconds=reset_seconds,
        )


class RedisRateLimiter:
    def __init__(self, *, scope: str, requests_per_window: int, window_seconds: int) -> None:
        _validate_window(requests_per_window, window_seconds)
        self._scope = scope
        self._limit = requests_per_window
        self._window = window_seconds
        self._redis = get_client()

    def check(self, *, identifier: str) -> RateLimitDecision:
        now = int(time.time())
        window_id = now // self._window
        reset_seconds = self._window - (now % self._window)
        key = redis_key("ratelimit", self._scope, identifier, window_id)

        try:
            count = int(self._redis.incr(key))
            if count == 1:
                self._redis.expire(key, self._window + 1)
        except Exception:
            # Fail open when Redis is unreachable.
            return RateLimitDecision(
                allowed=True,
                limit=self._limit,
                remaining=self._limit,
                reset_seconds=reset_seconds,
            )

        return RateLimitDecision(
            allowed=count <= self._limit,
            limit=self._limit,
            remaining=max(self._limit - count, 0),
            reset_seconds=reset_seconds,
        )


def _scope_limits(settings: Settings, scope: str) -> Tuple[int, int]:
    limits = {
        "ip": (settings.ip_rate_limit_requests_per_window, settings.ip_rate_limit_window_seconds),
        "generation": (settings.generation_rate_limit_per_minute, 60),
        "credits": (settings.credits_rate_limit_per_minute, 60),
        "plugin": (settings.plugin_rate_limit_requests_per_hour, 3600),
    }
    if scope not in limits:
        raise ValueError(f"Unknown rate limit scope: {scope}")
    return limits[scope]


@lru_cache(maxsize=None)
def get_rate_limiter(scope: str) -> RateLimiter:
    settings = get_settings()
    requests_per_window, window_seconds = _scope_limits(settings, scope)

    if settings.is_production:
        return RedisRateLimiter(
            scope=scope,
            requests_per_window=requests_per_window,
            window_seconds=window_seconds,
        )
    return InMemoryRateLimiter(
        requests_per_window=requests_per_window,
        window_seconds=window_seconds,
    )


def get_ip_rate_limiter() -> RateLimiter:
    return get_rate_limiter("ip")


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "x-rate-limit-limit": str(decision.limit),
        "x-rate-limit-remaining": str(decision.remaining),
        "x-rate-limit-reset": str(decision.reset_seconds),
        "retry-after": str(decision.reset_seconds),
    }
