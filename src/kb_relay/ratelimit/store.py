"""Counter-with-expiry stores backing the sliding window rate limiter."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from kb_relay.config import RateLimitConfig
from kb_relay.core.clock import Clock, wall_clock_ms

logger = logging.getLogger(__name__)


class WindowStoreError(Exception):
    """Raised when the shared backend fails during a live call."""


@dataclass(frozen=True)
class Admission:
    """Outcome of a single admit call."""

    admitted: bool
    count: int  # Events in the window before this one


class WindowStore(ABC):
    """Atomic counter-with-expiry primitive.

    Lapse rule shared by both implementations: a timestamp has aged out when
    ``ts <= now - window_ms``. Once the oldest timestamp of a key has aged
    out, the key's window has lapsed and every timestamp it holds is dropped
    before counting. A burst that straddles the lapse point can therefore
    exceed the quota within some trailing window of length ``window_ms``.
    """

    backend: str = "unknown"

    async def init(self) -> None:
        """Start background work. Default: nothing to start."""

    async def shutdown(self) -> None:
        """Release resources. Default: nothing to release."""

    @abstractmethod
    async def admit(self, key: str, now: int, window_ms: int, max_count: int) -> Admission:
        """Prune, count and (if under quota) record ``now`` for ``key`` atomically."""

    @abstractmethod
    async def stats(self) -> dict[str, Any]:
        """Backend-specific counters for the status endpoint."""


class LocalWindowStore(WindowStore):
    """In-process fallback store.

    ``admit`` never awaits, so prune/count/insert run without the event loop
    switching tasks in between. A periodic sweep drops keys whose window has
    lapsed; it only bounds memory, since every admit prunes its own key.
    """

    backend = "memory"

    def __init__(
        self, cleanup_interval_seconds: float = 300.0, clock: Clock | None = None
    ):
        self._windows: dict[str, deque[int]] = {}
        self._window_ms: dict[str, int] = {}
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock or wall_clock_ms
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._windows)

    async def init(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_forever())
            logger.info(
                f"LocalWindowStore sweep every {self._cleanup_interval:.0f}s"
            )

    async def shutdown(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        self._windows.clear()
        self._window_ms.clear()

    async def admit(self, key: str, now: int, window_ms: int, max_count: int) -> Admission:
        timestamps = self._windows.get(key)
        if timestamps is None:
            timestamps = deque()
            self._windows[key] = timestamps
        self._window_ms[key] = window_ms

        cutoff = now - window_ms
        if timestamps and timestamps[0] <= cutoff:
            timestamps.clear()

        count = len(timestamps)
        if count < max_count:
            timestamps.append(now)
            return Admission(admitted=True, count=count)
        return Admission(admitted=False, count=count)

    def sweep(self, now: int) -> int:
        """Drop keys whose window has lapsed. Returns the number removed."""
        stale = [
            key
            for key, timestamps in self._windows.items()
            if not timestamps or timestamps[0] <= now - self._window_ms.get(key, 0)
        ]
        for key in stale:
            del self._windows[key]
            self._window_ms.pop(key, None)
        if stale:
            logger.debug(f"LocalWindowStore swept {len(stale)} stale keys")
        return len(stale)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.sweep(self._clock())

    async def stats(self) -> dict[str, Any]:
        return {"memory_entries": len(self._windows)}


# KEYS[1] = window key
# ARGV = now, window_ms, max_count, member
_ADMIT_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local max_count = tonumber(ARGV[3])

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if oldest[2] and tonumber(oldest[2]) <= now - window then
    redis.call('DEL', key)
end

local count = redis.call('ZCARD', key)
local admitted = 0
if count < max_count then
    redis.call('ZADD', key, now, ARGV[4])
    admitted = 1
end
if admitted == 1 or count > 0 then
    redis.call('PEXPIRE', key, window)
end
return {admitted, count}
"""


class RedisWindowStore(WindowStore):
    """Shared store on a Redis sorted set per key (score = timestamp ms).

    The four sub-steps (prune, count, insert, refresh expiry) run inside a
    single Lua script, so Redis serializes concurrent admitters across every
    process in the fleet.
    """

    backend = "redis"

    def __init__(self, client: aioredis.Redis, key_prefix: str = "kb-relay:"):
        self._client = client
        self._key_prefix = key_prefix
        self._script = client.register_script(_ADMIT_SCRIPT)

    async def admit(self, key: str, now: int, window_ms: int, max_count: int) -> Admission:
        member = f"{now}-{uuid4().hex}"
        try:
            admitted, count = await self._script(
                keys=[self._key_prefix + key],
                args=[now, window_ms, max_count, member],
            )
        except (RedisError, OSError) as e:
            raise WindowStoreError(f"Redis admit failed for {key}: {e}") from e
        return Admission(admitted=bool(int(admitted)), count=int(count))

    async def stats(self) -> dict[str, Any]:
        try:
            keys = 0
            async for _ in self._client.scan_iter(match=f"{self._key_prefix}rate-limit:*"):
                keys += 1
            return {"redis_keys": keys}
        except (RedisError, OSError):
            return {"redis_keys": "error"}

    async def shutdown(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis connection: {e}")


async def open_window_store(
    config: RateLimitConfig, clock: Clock | None = None
) -> WindowStore:
    """Pick the window store for this process and initialize it.

    Tries the shared backend once. Any failure falls back to the local store
    for the rest of the process lifetime; no reconnect is attempted later.
    """
    if config.enabled and config.redis_enabled:
        password = config.redis_password.get_secret_value() if config.redis_password else None
        client = aioredis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            password=password,
            socket_connect_timeout=config.redis_connect_timeout_seconds,
            socket_timeout=config.redis_connect_timeout_seconds,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.warning(
                f"Redis unavailable at {config.redis_host}:{config.redis_port} ({e}), "
                "using in-memory rate limiting for this process"
            )
            try:
                await client.aclose()
            except (RedisError, OSError):
                pass
        else:
            store = RedisWindowStore(client, key_prefix=config.key_prefix)
            await store.init()
            logger.info(f"Rate limiting backed by Redis at {config.redis_host}:{config.redis_port}")
            return store

    store = LocalWindowStore(config.cleanup_interval_seconds, clock=clock)
    await store.init()
    return store
