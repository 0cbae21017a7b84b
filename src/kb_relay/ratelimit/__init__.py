"""Rate limiting for inbound bot events."""

from .limiter import RateLimiter, RateLimitResult
from .store import (
    Admission,
    LocalWindowStore,
    RedisWindowStore,
    WindowStore,
    WindowStoreError,
    open_window_store,
)

__all__ = [
    "Admission",
    "LocalWindowStore",
    "RateLimitResult",
    "RateLimiter",
    "RedisWindowStore",
    "WindowStore",
    "WindowStoreError",
    "open_window_store",
]
