"""Fixed-window request limiter keyed by client and endpoint."""

import logging
import math
import threading
import time
from typing import Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-process limiter; windows reset `window_seconds` after their first request."""

    def __init__(self, max_requests: int = 60, window_seconds: float = 60.0):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, list] = {}  # key -> [count, reset_time]
        self._lock = threading.Lock()
        self._last_sweep = time.time()

    @staticmethod
    def key(client_id: str, endpoint: str) -> str:
        return f"{client_id}:{endpoint}"

    def check(self, client_id: str, endpoint: str = "") -> dict:
        """
        Count one request against the caller's window.

        Returns:
            dict with allowed, remaining, reset_time (epoch seconds) and
            retry_after (seconds, only meaningful when not allowed)
        """
        key = self.key(client_id, endpoint)
        now = time.time()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            window = self._windows.get(key)
            if window is None or now >= window[1]:
                window = [1, now + self.window_seconds]
                self._windows[key] = window
                return {
                    "allowed": True,
                    "remaining": self.max_requests - 1,
                    "reset_time": window[1],
                    "retry_after": 0,
                }

            if window[0] >= self.max_requests:
                retry_after = max(1, math.ceil(window[1] - now))
                logger.warning(f"Rate limit exceeded for {key}; retry in {retry_after}s")
                return {
                    "allowed": False,
                    "remaining": 0,
                    "reset_time": window[1],
                    "retry_after": retry_after,
                }

            window[0] += 1
            return {
                "allowed": True,
                "remaining": self.max_requests - window[0],
                "reset_time": window[1],
                "retry_after": 0,
            }

    def _sweep(self, now: float) -> int:
        # caller holds the lock
        expired = [k for k, (_, reset) in self._windows.items() if now >= reset]
        for k in expired:
            del self._windows[k]
        self._last_sweep = now
        if expired:
            logger.debug(f"Dropped {len(expired)} expired rate-limit windows")
        return len(expired)

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        with self._lock:
            return self._sweep(time.time())

    def reset(self):
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
