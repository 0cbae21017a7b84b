"""Tests for the duplicate-event guard."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from kb_relay.core import DedupGuard, event_key


class TestEventKey:
    """Tests for key construction."""

    def test_combines_event_and_actor(self):
        assert event_key("m1", "u1") == "m1-u1"

    def test_accepts_numeric_ids(self):
        assert event_key(123, 456) == "123-456"


class TestDedupGuard:
    """Tests for DedupGuard behavior."""

    def test_first_admit_succeeds(self):
        guard = DedupGuard()
        assert guard.admit_once("a") is True
        assert guard.seen("a")

    def test_repeat_admit_rejected(self):
        """The same key is processed at most once while tracked."""
        guard = DedupGuard()
        guard.admit_once("a")
        assert guard.admit_once("a") is False
        assert len(guard) == 1

    def test_seen_without_admit(self):
        guard = DedupGuard()
        assert guard.seen("a") is False
        assert "a" not in guard

    def test_overflow_evicts_oldest(self):
        """Admitting max+5 keys leaves the newest max, oldest first."""
        guard = DedupGuard(max_tracked=100)
        keys = [f"k{i}" for i in range(105)]
        for key in keys:
            guard.admit_once(key)

        assert len(guard) == 100
        assert guard.keys() == keys[5:]
        for key in keys[:5]:
            assert not guard.seen(key)

    def test_evicted_key_is_new_again(self):
        guard = DedupGuard(max_tracked=2)
        guard.admit_once("a")
        guard.admit_once("b")
        guard.admit_once("c")
        assert guard.admit_once("a") is True

    def test_seen_does_not_refresh(self):
        """Eviction follows insertion order, not last access."""
        guard = DedupGuard(max_tracked=2)
        guard.admit_once("a")
        guard.admit_once("b")
        assert guard.seen("a")
        assert guard.admit_once("a") is False
        guard.admit_once("c")
        assert guard.keys() == ["b", "c"]

    def test_clear(self):
        guard = DedupGuard()
        guard.admit_once("a")
        guard.clear()
        assert len(guard) == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            DedupGuard(max_tracked=0)


class TestDedupProperties:
    """Property-based tests for the guard."""

    @given(
        keys=st.lists(st.text(min_size=1, max_size=8), max_size=200),
        capacity=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=50)
    def test_size_bounded(self, keys: list[str], capacity: int):
        """Property: the guard never tracks more than its capacity."""
        guard = DedupGuard(max_tracked=capacity)
        for key in keys:
            guard.admit_once(key)
            assert len(guard) <= capacity

    @given(keys=st.lists(st.text(min_size=1, max_size=8), max_size=50))
    @settings(max_examples=50)
    def test_most_recent_key_always_tracked(self, keys: list[str]):
        """Property: the key just admitted is always tracked."""
        guard = DedupGuard(max_tracked=5)
        for key in keys:
            guard.admit_once(key)
            assert guard.seen(key)
