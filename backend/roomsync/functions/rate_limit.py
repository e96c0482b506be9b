"""Fixed-window in-memory rate limiter for the room functions.

Counters live in the process and reset on restart; that is enough to blunt
room-code brute forcing and runaway AI usage from a single client.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Allow at most ``max_requests`` per ``window_seconds`` for each key."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def check(self, key: str) -> bool:
        """Record one request for ``key``; False once the window is exhausted."""
        now = self._clock()
        self._prune(now)
        window = self._windows.get(key)
        if window is None:
            self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
            return True
        if window.count >= self.max_requests:
            return False
        window.count += 1
        return True

    def retry_after(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None:
            return 0
        return max(0, int(window.reset_at - self._clock()))

    def reset(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
