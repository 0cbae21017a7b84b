"""Bounded duplicate-event guard."""

import logging

logger = logging.getLogger(__name__)


def event_key(event_id: str | int, actor_id: str | int) -> str:
    """Key identifying one inbound event from one actor."""
    return f"{event_id}-{actor_id}"


class DedupGuard:
    """Insertion-ordered set of processed event keys, capped at ``max_tracked``.

    Eviction is by insertion order, not by last use: checking a key with
    ``seen`` does not refresh it, and a duplicate arriving after its key was
    evicted is treated as new. State lives only as long as the process.
    """

    def __init__(self, max_tracked: int = 100):
        if max_tracked < 1:
            raise ValueError("max_tracked must be at least 1")
        self.max_tracked = max_tracked
        # dict preserves insertion order; values are unused
        self._keys: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def seen(self, key: str) -> bool:
        """True if ``key`` was already admitted."""
        return key in self._keys

    def admit_once(self, key: str) -> bool:
        """Record ``key``. Returns False if it was already recorded."""
        if key in self._keys:
            logger.debug(f"DEDUP: duplicate {key}")
            return False

        self._keys[key] = None
        overflow = len(self._keys) - self.max_tracked
        if overflow > 0:
            for old in list(self._keys)[:overflow]:
                del self._keys[old]
        return True

    def keys(self) -> list[str]:
        """Tracked keys, oldest first."""
        return list(self._keys)

    def clear(self) -> None:
        self._keys.clear()
