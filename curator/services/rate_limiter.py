"""
Per-caller sliding-window rate limiting.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional


class RateLimitExceededError(Exception):
    """Raised when a caller has used up its window"""

    def __init__(self, caller_id: str, retry_after: float):
        super().__init__(f"Rate limit exceeded for {caller_id}; retry in {retry_after:.1f}s")
        self.caller_id = caller_id
        self.retry_after = retry_after


class SlidingWindowRateLimiter:
    """
    Allows ``max_requests`` per caller in any trailing ``window_seconds``.

    Expired timestamps are evicted on every check, and inactive callers are
    swept out every ``cleanup_interval`` seconds so memory stays bounded.
    """

    def __init__(self,
                 max_requests: int = 1,
                 window_seconds: float = 30.0,
                 cleanup_interval: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self.logger = logging.getLogger(__name__)

    def _evict(self, caller_id: str, now: float) -> Deque[float]:
        window = self._windows.get(caller_id)
        if window is None:
            return deque()
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        if not window:
            del self._windows[caller_id]
        return window

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self.cleanup_interval:
            return
        self._last_sweep = now
        self.sweep(now)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop callers with no timestamps left in the window."""
        now = self._clock() if now is None else now
        before = len(self._windows)
        for caller_id in list(self._windows):
            self._evict(caller_id, now)
        removed = before - len(self._windows)
        if removed:
            self.logger.debug(f"Swept {removed} inactive callers")
        return removed

    def check_limit(self, caller_id: str) -> bool:
        now = self._clock()
        self._maybe_sweep(now)
        return len(self._evict(caller_id, now)) < self.max_requests

    def record_request(self, caller_id: str) -> None:
        now = self._clock()
        self._evict(caller_id, now)
        self._windows.setdefault(caller_id, deque()).append(now)

    def try_acquire(self, caller_id: str) -> bool:
        """Check and record in one step; False leaves the window untouched."""
        now = self._clock()
        self._maybe_sweep(now)
        window = self._evict(caller_id, now)
        if len(window) >= self.max_requests:
            return False
        self._windows.setdefault(caller_id, deque()).append(now)
        return True

    def acquire(self, caller_id: str) -> None:
        if not self.try_acquire(caller_id):
            status = self.get_status(caller_id)
            raise RateLimitExceededError(caller_id, status["next_available_in_ms"] / 1000)

    def get_status(self, caller_id: str) -> Dict[str, Any]:
        now = self._clock()
        window = self._evict(caller_id, now)
        can_request = len(window) < self.max_requests
        next_available = 0.0
        if not can_request and window:
            next_available = max(0.0, window[0] + self.window_seconds - now)
        return {
            "requests_in_window": len(window),
            "max_requests": self.max_requests,
            "window_ms": round(self.window_seconds * 1000),
            "can_request": can_request,
            "next_available_in_ms": round(next_available * 1000),
        }

    def reset(self, caller_id: str) -> None:
        self._windows.pop(caller_id, None)

    def clear_all(self) -> None:
        self._windows.clear()

    def get_global_stats(self) -> Dict[str, Any]:
        now = self._clock()
        self.sweep(now)
        return {
            "tracked_callers": len(self._windows),
            "total_requests_in_window": sum(len(w) for w in self._windows.values()),
            "max_requests": self.max_requests,
            "window_ms": round(self.window_seconds * 1000),
        }
