"""Deduplication gate for vote webhooks.

The voting platform retries deliveries, so the same user can arrive
several times for a single vote. Users processed within the dedup window
are suppressed; entries are kept in insertion order and evicted once they
are older than the retention period.

Process-local and best effort: a restart forgets every entry.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable


class VoteDedupGate:
    """Time-window suppression keyed by external user id."""

    def __init__(
        self,
        window_seconds: float = 1800.0,
        retention_seconds: float = 43200.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._seen: OrderedDict[str, float] = OrderedDict()
        self._window = window_seconds
        self._retention = retention_seconds
        self._clock = clock
        self._suppressed = 0

    def is_suppressed(self, user_id: str, now: float | None = None) -> bool:
        """True if ``user_id`` was processed less than the window ago.

        Read only: the caller records the user once the vote is stored.
        """
        if now is None:
            now = self._clock()
        last = self._seen.get(user_id)
        if last is not None and now - last < self._window:
            self._suppressed += 1
            return True
        return False

    def record(self, user_id: str, now: float | None = None) -> None:
        if now is None:
            now = self._clock()
        # Re-insert so the OrderedDict stays sorted by processing time
        self._seen.pop(user_id, None)
        self._seen[user_id] = now
        self.prune(now)

    def prune(self, now: float | None = None) -> int:
        """Drop entries older than the retention period."""
        if now is None:
            now = self._clock()
        cutoff = now - self._retention
        removed = 0
        while self._seen:
            _, ts = next(iter(self._seen.items()))
            if ts >= cutoff:
                break
            self._seen.popitem(last=False)
            removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._seen

    @property
    def stats(self) -> dict[str, int]:
        return {
            "tracked": len(self._seen),
            "suppressed": self._suppressed,
        }
