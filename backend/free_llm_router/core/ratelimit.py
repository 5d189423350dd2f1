"""Process-local rate limiting and response caching.

Both components live in one server process only. Counters and cached
bodies are not shared between instances, so limits are best effort per
instance. They are built once at application start and handed to routes
through ``app.state``.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitState:
    limited: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if self.limited:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    def __init__(self, clock: Clock = time.time, max_entries: int = 10_000):
        self._clock = clock
        self._max_entries = max_entries
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitState:
        """Count one request for ``key`` and report whether it is over ``limit``."""
        now = self._clock()
        with self._lock:
            reset_at, count = self._windows.get(key, (0.0, 0))
            if now >= reset_at:
                if len(self._windows) >= self._max_entries:
                    self._prune(now)
                reset_at, count = now + window_seconds, 0

            if count >= limit:
                self._windows[key] = (reset_at, count)
                return RateLimitState(
                    limited=True,
                    limit=limit,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(1, int(math.ceil(reset_at - now))),
                )

            count += 1
            self._windows[key] = (reset_at, count)
            return RateLimitState(
                limited=False,
                limit=limit,
                remaining=max(0, limit - count),
                reset_at=reset_at,
                retry_after=0,
            )

    def usage(self, key: str) -> tuple[int, float | None]:
        """Requests counted in the current window and when it resets, without counting."""
        now = self._clock()
        with self._lock:
            reset_at, count = self._windows.get(key, (0.0, 0))
        if now >= reset_at:
            return 0, None
        return count, reset_at

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [key for key, (reset_at, _) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]


class TtlCache:
    def __init__(self, ttl_seconds: float, clock: Clock = time.time, max_entries: int = 256):
        self._ttl = ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        with self._lock:
            if len(self._entries) >= self._max_entries:
                expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
                for k in expired:
                    del self._entries[k]
                if len(self._entries) >= self._max_entries:
                    oldest = min(self._entries, key=lambda k: self._entries[k][0])
                    del self._entries[oldest]
            self._entries[key] = (now + self._ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
