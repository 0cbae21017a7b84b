"""Per-user, per-action sliding window admission control."""

import logging
import math
from dataclasses import dataclass
from typing import Any

from kb_relay.config import RateLimitConfig
from kb_relay.core.clock import Clock, wall_clock_ms
from kb_relay.ratelimit.store import LocalWindowStore, WindowStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    reset_time: int  # ms since epoch; 0 when limiting does not apply

    def __str__(self) -> str:
        status = "ALLOW" if self.allowed else "DENY"
        return f"RateLimit[{status}]: remaining={self.remaining}, reset={self.reset_time}"


class RateLimiter:
    """Decides allow/deny per (identifier, action).

    ``reset_time`` is ``now + window_ms``: an upper bound on when the caller
    may retry, not the exact moment the oldest entry ages out.

    Backend errors fail open. The bot stays available when the store does not.
    """

    def __init__(
        self,
        store: WindowStore,
        window_ms: int,
        max_requests: int,
        enabled: bool = True,
        clock: Clock | None = None,
    ):
        if window_ms < 0 or max_requests < 0:
            raise ValueError("window_ms and max_requests must be non-negative")
        self._store = store
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.enabled = enabled
        self._clock = clock or wall_clock_ms
        logger.info(
            f"RateLimiter initialized: enabled={enabled}, window={window_ms}ms, "
            f"max={max_requests}, backend={store.backend}"
        )

    @classmethod
    def from_config(
        cls,
        config: RateLimitConfig,
        store: WindowStore | None = None,
        clock: Clock | None = None,
    ) -> "RateLimiter":
        if store is None:
            store = LocalWindowStore(config.cleanup_interval_seconds, clock=clock)
        return cls(
            store,
            window_ms=config.window_ms,
            max_requests=config.max_requests,
            enabled=config.enabled,
            clock=clock,
        )

    @property
    def backend(self) -> str:
        return self._store.backend

    @staticmethod
    def key_for(identifier: str, action: str) -> str:
        return f"rate-limit:{identifier}:{action}"

    async def check_limit(self, identifier: str, action: str = "default") -> RateLimitResult:
        """Check whether ``identifier`` may perform ``action`` now.

        Records the event when it is admitted. Never raises.
        """
        if not self.enabled:
            return RateLimitResult(allowed=True, remaining=self.max_requests, reset_time=0)

        now = self._clock()
        key = self.key_for(identifier, action)
        try:
            admission = await self._store.admit(key, now, self.window_ms, self.max_requests)
        except Exception as e:
            logger.error(f"RATE_LIMIT: store error for {key}, failing open: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=max(0, self.max_requests - 1),
                reset_time=now + self.window_ms,
            )

        used = admission.count + (1 if admission.admitted else 0)
        result = RateLimitResult(
            allowed=admission.admitted,
            remaining=max(0, self.max_requests - used),
            reset_time=now + self.window_ms,
        )
        logger.debug(f"RATE_LIMIT: {key} -> {result}")
        return result

    def wait_seconds(self, result: RateLimitResult, now: int | None = None) -> int:
        """Whole seconds until ``result.reset_time``, never negative."""
        if now is None:
            now = self._clock()
        return max(0, math.ceil((result.reset_time - now) / 1000))

    def log_rate_limit(self, identifier: str, action: str, remaining: int) -> None:
        """Log a denial for monitoring."""
        logger.warning(
            f"RATE_LIMIT: hit user={identifier} action={action} remaining={remaining}"
        )

    async def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "enabled": self.enabled,
            "window_ms": self.window_ms,
            "max_requests": self.max_requests,
            "backend": self._store.backend,
        }
        stats.update(await self._store.stats())
        return stats

    async def init(self) -> None:
        await self._store.init()

    async def shutdown(self) -> None:
        await self._store.shutdown()
