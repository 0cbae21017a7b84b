"""Tests for the sliding window rate limiter."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from conftest import FakeClock

from kb_relay.config import RateLimitConfig
from kb_relay.ratelimit import (
    LocalWindowStore,
    RateLimiter,
    RateLimitResult,
    WindowStoreError,
)


def make_limiter(clock, window_ms=60_000, max_requests=30, enabled=True) -> RateLimiter:
    return RateLimiter(
        LocalWindowStore(clock=clock),
        window_ms=window_ms,
        max_requests=max_requests,
        enabled=enabled,
        clock=clock,
    )


class TestCheckLimit:
    """Tests for allow/deny decisions."""

    @pytest.mark.asyncio
    async def test_allows_quota_then_denies(self, clock):
        """The first N calls in a window are allowed, the next is denied."""
        limiter = make_limiter(clock, window_ms=1000, max_requests=3)
        results = [await limiter.check_limit("u1", "message") for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self, clock):
        """Remaining goes 29, 28, ... 0 and then stays at 0 when denied."""
        limiter = make_limiter(clock)
        remaining = []
        for _ in range(31):
            result = await limiter.check_limit("u1", "message")
            remaining.append(result.remaining)
            clock.advance(1)
        assert remaining[:30] == list(range(29, -1, -1))
        assert remaining[30] == 0

    @pytest.mark.asyncio
    async def test_window_lapse_restores_quota(self, clock):
        """Thirty calls spread over the first second, then one a minute later."""
        limiter = make_limiter(clock)
        for _ in range(30):
            assert (await limiter.check_limit("u1", "message")).allowed
            clock.advance(30)

        clock.now = 500
        denied = await limiter.check_limit("u1", "message")
        assert denied.allowed is False
        assert denied.remaining == 0

        clock.now = 60_001
        result = await limiter.check_limit("u1", "message")
        assert result.allowed is True
        assert result.remaining == 29
        assert result.reset_time == 60_001 + 60_000

    @pytest.mark.asyncio
    async def test_actions_and_users_independent(self, clock):
        limiter = make_limiter(clock, window_ms=1000, max_requests=1)
        assert (await limiter.check_limit("u1", "message")).allowed
        assert not (await limiter.check_limit("u1", "message")).allowed
        assert (await limiter.check_limit("u1", "feedback")).allowed
        assert (await limiter.check_limit("u2", "message")).allowed

    @pytest.mark.asyncio
    async def test_default_action(self, clock):
        limiter = make_limiter(clock, window_ms=1000, max_requests=1)
        assert (await limiter.check_limit("u1")).allowed
        assert not (await limiter.check_limit("u1", "default")).allowed

    @pytest.mark.asyncio
    async def test_reset_time_is_now_plus_window(self, clock):
        clock.now = 12_345
        limiter = make_limiter(clock, window_ms=1000)
        result = await limiter.check_limit("u1")
        assert result.reset_time == 13_345

    @pytest.mark.asyncio
    async def test_zero_quota_denies_everything(self, clock):
        limiter = make_limiter(clock, max_requests=0)
        result = await limiter.check_limit("u1")
        assert result == RateLimitResult(allowed=False, remaining=0, reset_time=60_000)

    @pytest.mark.asyncio
    async def test_disabled_always_allows(self, clock):
        """A disabled limiter never consults the store."""
        store = AsyncMock()
        store.backend = "memory"
        limiter = RateLimiter(store, window_ms=1000, max_requests=5, enabled=False, clock=clock)
        for _ in range(20):
            result = await limiter.check_limit("u1")
            assert result == RateLimitResult(allowed=True, remaining=5, reset_time=0)
        store.admit.assert_not_called()

    def test_negative_parameters_rejected(self, clock):
        with pytest.raises(ValueError):
            make_limiter(clock, window_ms=-1)
        with pytest.raises(ValueError):
            make_limiter(clock, max_requests=-1)


class TestFailOpen:
    """Tests for store failures."""

    @pytest.mark.asyncio
    async def test_store_error_allows(self, clock):
        """A failing store on the second call still allows it."""
        store = LocalWindowStore(clock=clock)
        limiter = RateLimiter(store, window_ms=60_000, max_requests=30, clock=clock)

        first = await limiter.check_limit("u1", "message")
        assert first.allowed

        store.admit = AsyncMock(side_effect=WindowStoreError("connection reset"))
        clock.advance(100)
        second = await limiter.check_limit("u1", "message")
        assert second == RateLimitResult(allowed=True, remaining=29, reset_time=60_100)

    @pytest.mark.asyncio
    async def test_unexpected_error_allows(self, clock):
        store = AsyncMock()
        store.backend = "redis"
        store.admit.side_effect = RuntimeError("boom")
        limiter = RateLimiter(store, window_ms=1000, max_requests=1, clock=clock)
        result = await limiter.check_limit("u1")
        assert result.allowed is True
        assert result.remaining == 0


class TestHelpers:
    """Tests for the limiter's helper methods."""

    def test_key_format(self):
        assert RateLimiter.key_for("123", "message") == "rate-limit:123:message"

    def test_wait_seconds_rounds_up(self, clock):
        limiter = make_limiter(clock)
        result = RateLimitResult(allowed=False, remaining=0, reset_time=1500)
        assert limiter.wait_seconds(result, now=0) == 2
        assert limiter.wait_seconds(result, now=500) == 1

    def test_wait_seconds_never_negative(self, clock):
        limiter = make_limiter(clock)
        result = RateLimitResult(allowed=False, remaining=0, reset_time=100)
        assert limiter.wait_seconds(result, now=5000) == 0

    def test_str(self):
        result = RateLimitResult(allowed=False, remaining=0, reset_time=10)
        assert "DENY" in str(result)

    @pytest.mark.asyncio
    async def test_stats_include_backend(self, clock):
        limiter = make_limiter(clock)
        await limiter.check_limit("u1")
        stats = await limiter.stats()
        assert stats["backend"] == "memory"
        assert stats["memory_entries"] == 1
        assert stats["max_requests"] == 30

    def test_from_config(self, rate_limit_config, clock):
        limiter = RateLimiter.from_config(rate_limit_config, clock=clock)
        assert limiter.window_ms == 60_000
        assert limiter.max_requests == 30
        assert limiter.enabled is True
        assert limiter.backend == "memory"

    def test_from_config_disabled_by_default(self):
        limiter = RateLimiter.from_config(RateLimitConfig())
        assert limiter.enabled is False


class TestProperties:
    """Property-based tests for limiter invariants."""

    @given(
        max_requests=st.integers(min_value=0, max_value=10),
        steps=st.lists(st.integers(min_value=0, max_value=400), min_size=1, max_size=40),
    )
    @settings(max_examples=50)
    def test_remaining_in_bounds(self, max_requests: int, steps: list[int]):
        """Property: remaining stays within [0, max] and a zero quota admits nothing."""
        clock = FakeClock()
        limiter = make_limiter(clock, window_ms=1000, max_requests=max_requests)

        async def run() -> list[RateLimitResult]:
            results = []
            for step in steps:
                clock.advance(step)
                results.append(await limiter.check_limit("u1"))
            return results

        for result in asyncio.run(run()):
            assert 0 <= result.remaining <= max_requests
            if max_requests == 0:
                assert result.allowed is False

    @given(burst=st.integers(min_value=1, max_value=60))
    @settings(max_examples=30)
    def test_burst_never_exceeds_quota(self, burst: int):
        """Property: within one window at most max_requests calls are allowed."""
        clock = FakeClock()
        limiter = make_limiter(clock, window_ms=60_000, max_requests=30)

        async def run() -> int:
            allowed = 0
            for _ in range(burst):
                clock.advance(10)
                if (await limiter.check_limit("u1")).allowed:
                    allowed += 1
            return allowed

        assert asyncio.run(run()) == min(burst, 30)
