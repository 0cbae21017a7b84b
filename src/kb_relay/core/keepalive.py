"""Recurring "still working" signal while an answer is pending."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TypingKeepalive:
    """Async context manager that re-sends a typing signal every ``interval``.

    The signal has no timeout of its own. Leaving the ``async with`` block by
    any path (return, exception, cancellation) cancels the timer task.
    """

    def __init__(self, send: Callable[[], Awaitable[None]], interval: float = 8.0):
        self._send = send
        self._interval = interval
        self._task: asyncio.Task | None = None
        self.sent = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "TypingKeepalive":
        await self._signal()
        self._task = asyncio.create_task(self._repeat())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _signal(self) -> bool:
        try:
            await self._send()
        except Exception as e:
            logger.warning(f"Failed to send typing indicator: {e}")
            return False
        self.sent += 1
        return True

    async def _repeat(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not await self._signal():
                # Channel stopped accepting the signal; no point retrying
                return
