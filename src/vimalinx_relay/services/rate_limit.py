"""Fixed-window request throttling keyed by route scope and client address."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Counts hits per key inside a fixed window that restarts once expired."""

    def __init__(self, enabled: bool = True, clock: Callable[[], float] = time.monotonic) -> None:
        self.enabled = enabled
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = Lock()

    def hit(self, key: str, limit: int, window_seconds: float) -> bool:
        """Register one hit; return False once ``limit`` is exceeded in the window."""
        if not self.enabled:
            return True
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                self._windows[key] = _Window(count=1, reset_at=now + window_seconds)
                return True
            window.count += 1
            return window.count <= limit
