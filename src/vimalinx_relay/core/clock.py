# src/vimalinx_relay/core/clock.py
"""Time utilities."""

import time


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
