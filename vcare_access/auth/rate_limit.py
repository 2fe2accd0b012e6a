from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter per key (usually the client address).

    Expired windows are swept at most once per window length, so keys that stop
    sending requests do not accumulate.
    """

    def __init__(self, max_requests: int, window_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        if int(max_requests) < 1 or float(window_seconds) <= 0:
            raise ValueError("rate limiter needs max_requests >= 1 and window_seconds > 0")
        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}
        self._last_purge = clock()

    def allow(self, key: str) -> bool:
        """Count one request for `key`; False once the window's budget is spent."""
        now = self._clock()
        with self._lock:
            if now - self._last_purge >= self.window_seconds:
                self._purge_locked(now)
            w = self._windows.get(key)
            if w is None or w.reset_at <= now:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if w.count >= self.max_requests:
                return False
            w.count += 1
            return True

    def retry_after(self, key: str) -> int:
        """Whole seconds until `key` may try again (0 if it is not currently limited)."""
        now = self._clock()
        with self._lock:
            w = self._windows.get(key)
            if w is None or w.reset_at <= now or w.count < self.max_requests:
                return 0
            return max(1, math.ceil(w.reset_at - now))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _purge_locked(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if w.reset_at <= now]:
            del self._windows[key]
        self._last_purge = now
