"""Replay protection for signed requests."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock


class ReplayProtectionService:
    """Per-scope sliding windows of seen signature nonces.

    Scopes look like ``poll:<userId>`` or ``send:<userId>``. Entries older
    than the window are pruned on every check; nothing is persisted.
    """

    def __init__(self) -> None:
        self._windows: dict[str, dict[str, int]] = defaultdict(dict)
        self._lock = Lock()

    def check_and_store(self, scope: str, nonce: str, now_ms: int, ttl_ms: int) -> bool:
        """Record a nonce; return False if it was already seen inside the window."""
        cutoff = now_ms - ttl_ms
        with self._lock:
            window = self._windows[scope]
            for seen_nonce, seen_at in list(window.items()):
                if seen_at < cutoff:
                    del window[seen_nonce]
            if nonce in window:
                return False
            window[nonce] = now_ms
            return True

    def window_size(self, scope: str) -> int:
        with self._lock:
            return len(self._windows.get(scope, {}))
