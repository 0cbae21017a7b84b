"""Millisecond clock shared by the limiter, dedup and feedback layers."""

import time
from collections.abc import Callable

# Returns the current time in integer milliseconds.
Clock = Callable[[], int]


def wall_clock_ms() -> int:
    """Current wall-clock time in milliseconds.

    Wall time rather than a monotonic counter: window scores written to the
    shared store are compared by every bot process in the fleet.
    """
    return time.time_ns() // 1_000_000
