"""Bounded queue for fire-and-forget side effects."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class BackgroundDispatcher:
    """Runs best-effort work (secondary writes, notifications) off the hot path.

    Callers hand over a zero-argument coroutine factory with ``submit`` and
    never await the result. When the queue is full the job is dropped.
    Exceptions raised by a job are logged and go no further.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.dropped = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    def submit(self, name: str, job: Job) -> bool:
        """Queue ``job``. Returns False if it was dropped."""
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Background queue full, dropping {name}")
            return False
        return True

    async def _run(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.warning(f"Background job {name} failed (non-critical): {e}")
            finally:
                self._queue.task_done()

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Give queued work ``timeout`` seconds to finish, then stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Background queue not drained, {self.pending} jobs abandoned")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
