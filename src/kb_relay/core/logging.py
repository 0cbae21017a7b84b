"""Logging utilities and session counters for kb-relay."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generator


@dataclass
class SessionStats:
    """Cumulative statistics for a session.

    Thread-safe counters for tracking bot activity metrics.
    """

    messages_received: int = 0
    messages_processed: int = 0
    commands_executed: int = 0
    feedback_submitted: int = 0
    errors_encountered: int = 0
    rate_limit_hits: int = 0
    duplicates_dropped: int = 0
    response_time_total_ms: int = 0
    response_time_count: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, stat: str, amount: int = 1) -> None:
        """Increment a stat counter."""
        with self._lock:
            if hasattr(self, stat) and stat != "_lock":
                current = getattr(self, stat)
                if isinstance(current, int):
                    setattr(self, stat, current + amount)

    def record_response_time(self, duration_ms: int) -> None:
        """Add one upstream round trip to the running average."""
        with self._lock:
            self.response_time_total_ms += duration_ms
            self.response_time_count += 1

    @property
    def average_response_ms(self) -> int:
        with self._lock:
            if self.response_time_count == 0:
                return 0
            return round(self.response_time_total_ms / self.response_time_count)

    def summary(self) -> dict[str, Any]:
        """Return a summary of all stats."""
        average = self.average_response_ms
        with self._lock:
            return {
                "messages_received": self.messages_received,
                "messages_processed": self.messages_processed,
                "commands_executed": self.commands_executed,
                "feedback_submitted": self.feedback_submitted,
                "errors_encountered": self.errors_encountered,
                "rate_limit_hits": self.rate_limit_hits,
                "duplicates_dropped": self.duplicates_dropped,
                "response_time": {
                    "total": self.response_time_total_ms,
                    "count": self.response_time_count,
                    "average": average,
                },
            }

    def summary_line(self) -> str:
        """Return a single-line summary for logging."""
        average = self.average_response_ms
        with self._lock:
            return (
                f"received={self.messages_received} processed={self.messages_processed} "
                f"commands={self.commands_executed} feedback={self.feedback_submitted} "
                f"errors={self.errors_encountered} rate_limited={self.rate_limit_hits} "
                f"dupes={self.duplicates_dropped} avg_ms={average}"
            )


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str
) -> Generator[None, None, None]:
    """Context manager for timing operations.

    Logs at DEBUG level on completion.

    Example:
        with log_timing(logger, "Rate check"):
            result = await limiter.check_limit(...)
        # Logs: "Rate check completed in 1.23ms"
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
