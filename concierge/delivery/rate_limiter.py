"""In-memory sliding window rate limiter for outbound platform calls."""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass
class RateLimiterState:
    timestamps: list[float] = field(default_factory=list)


class SlidingWindowRateLimiter:
    """Process-wide sliding window shared by every outbound call.

    Default: 600 requests per 3600 seconds. State starts empty and is pruned
    lazily on each check.
    """

    def __init__(
        self,
        max_requests: int = 600,
        window_seconds: int = 3600,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._state = RateLimiterState()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def _prune(self, now: float) -> list[float]:
        cutoff = now - self._window_seconds
        self._state.timestamps = [t for t in self._state.timestamps if t > cutoff]
        return self._state.timestamps

    def can_make_request(self) -> bool:
        """Return True if one more request fits in the current window."""
        return len(self._prune(time.time())) < self._max_requests

    def record_request(self) -> None:
        now = time.time()
        self._prune(now)
        self._state.timestamps.append(now)

    def remaining(self) -> int:
        return max(0, self._max_requests - len(self._prune(time.time())))

    def reset(self) -> None:
        self._state = RateLimiterState()
