"""Tests for the typing keep-alive."""

import asyncio

import pytest

from kb_relay.core import TypingKeepalive


class Counter:
    def __init__(self, fail_after: int | None = None):
        self.calls = 0
        self.fail_after = fail_after

    async def __call__(self) -> None:
        self.calls += 1
        if self.fail_after is not None and self.calls > self.fail_after:
            raise RuntimeError("channel gone")


class TestTypingKeepalive:
    """Tests for TypingKeepalive."""

    @pytest.mark.asyncio
    async def test_sends_immediately(self):
        send = Counter()
        async with TypingKeepalive(send, interval=60):
            assert send.calls == 1

    @pytest.mark.asyncio
    async def test_repeats_while_pending(self):
        send = Counter()
        async with TypingKeepalive(send, interval=0.01):
            await asyncio.sleep(0.055)
        assert send.calls >= 3

    @pytest.mark.asyncio
    async def test_stops_on_normal_exit(self):
        send = Counter()
        async with TypingKeepalive(send, interval=0.01) as keepalive:
            assert keepalive.active
        calls = send.calls
        assert not keepalive.active
        await asyncio.sleep(0.05)
        assert send.calls == calls

    @pytest.mark.asyncio
    async def test_stops_on_exception(self):
        """Leaving the block through an exception still releases the timer."""
        send = Counter()
        keepalive = TypingKeepalive(send, interval=0.01)
        with pytest.raises(ValueError):
            async with keepalive:
                raise ValueError("upstream failed")
        assert not keepalive.active
        calls = send.calls
        await asyncio.sleep(0.05)
        assert send.calls == calls

    @pytest.mark.asyncio
    async def test_stops_on_cancellation(self):
        send = Counter()
        keepalive = TypingKeepalive(send, interval=0.01)

        async def pending():
            async with keepalive:
                await asyncio.sleep(10)

        task = asyncio.create_task(pending())
        await asyncio.sleep(0.03)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not keepalive.active

    @pytest.mark.asyncio
    async def test_send_failure_does_not_propagate(self):
        """A failing signal is logged and the repeat loop gives up."""
        send = Counter(fail_after=1)
        async with TypingKeepalive(send, interval=0.01) as keepalive:
            await asyncio.sleep(0.05)
            assert keepalive.sent == 1
            assert not keepalive.active
        assert send.calls == 2

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        keepalive = TypingKeepalive(Counter(), interval=0.01)
        await keepalive.stop()
        async with keepalive:
            pass
        await keepalive.stop()
