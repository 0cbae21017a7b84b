"""Ephemeral correlation of emitted answers with later feedback clicks."""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from kb_relay.core.clock import Clock, wall_clock_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackRecord:
    """Context needed to process feedback on an answer we sent."""

    question: str
    answer: str
    actor_id: str
    actor_name: str
    response_id: str | None = None  # Backend's id for the answer
    sources: list[dict[str, Any]] = field(default_factory=list)
    channel_id: str | None = None
    guild_id: str | None = None
    source_event_id: str | None = None
    created_at: int = field(default=0, compare=False)


@dataclass
class _Entry:
    record: FeedbackRecord
    expires_at: int
    seq: int


class FeedbackCorrelator:
    """TTL-keyed store of FeedbackRecords, keyed by the emitted message id.

    A record is visible for ``ttl_ms`` after ``register`` and absent from then
    on, whether or not it has been physically purged. Expiry is time driven;
    ``resolve`` never extends or consumes a record.

    Purges are scheduled on a min-heap. Logical expiry is exact because every
    read compares against the clock; physical removal happens on each call
    and on a periodic sweep, so memory lags by at most one sweep interval.
    """

    def __init__(
        self,
        ttl_ms: int = 600_000,
        clock: Clock | None = None,
        sweep_interval_seconds: float = 60.0,
    ):
        if ttl_ms < 1:
            raise ValueError("ttl_ms must be positive")
        self.ttl_ms = ttl_ms
        self._clock = clock or wall_clock_ms
        self._sweep_interval = sweep_interval_seconds
        self._entries: dict[str, _Entry] = {}
        self._expirations: list[tuple[int, int, str]] = []
        self._seq = itertools.count()
        self._sweep_task: asyncio.Task | None = None

    def __len__(self) -> int:
        """Physically held records, including expired ones not yet purged."""
        return len(self._entries)

    def register(self, response_id: str, record: FeedbackRecord) -> FeedbackRecord:
        """Store ``record`` for ``response_id``, replacing any previous one."""
        now = self._clock()
        self.purge_expired(now)

        stored = replace(record, created_at=now)
        seq = next(self._seq)
        expires_at = now + self.ttl_ms
        # An older heap entry for the same id keeps its old seq and is skipped on purge
        self._entries[response_id] = _Entry(record=stored, expires_at=expires_at, seq=seq)
        heapq.heappush(self._expirations, (expires_at, seq, response_id))
        logger.debug(f"FEEDBACK: registered {response_id}, expires at {expires_at}")
        return stored

    def resolve(self, response_id: str) -> FeedbackRecord | None:
        """The live record for ``response_id``, or None once expired or discarded."""
        now = self._clock()
        self.purge_expired(now)
        entry = self._entries.get(response_id)
        if entry is None or now >= entry.expires_at:
            return None
        return entry.record

    def discard(self, response_id: str) -> None:
        """Drop the record once its feedback was handled. Safe to repeat."""
        self._entries.pop(response_id, None)
        self.purge_expired(self._clock())

    def purge_expired(self, now: int | None = None) -> int:
        """Remove records whose TTL has passed. Returns how many were removed."""
        if now is None:
            now = self._clock()
        purged = 0
        while self._expirations and self._expirations[0][0] <= now:
            _, seq, response_id = heapq.heappop(self._expirations)
            entry = self._entries.get(response_id)
            if entry is not None and entry.seq == seq:
                del self._entries[response_id]
                purged += 1
        if purged:
            logger.debug(f"FEEDBACK: purged {purged} expired records")
        return purged

    async def init(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_forever())

    async def shutdown(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        self._entries.clear()
        self._expirations.clear()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.purge_expired()
