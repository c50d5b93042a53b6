"""Event-id deduplication.

In long-connection mode Feishu re-pushes an event when the ACK does not
arrive within 3 seconds.  Every handler consults the cache before doing any
work so a re-pushed event is dropped inside the TTL window.
"""

from __future__ import annotations

import time
from collections.abc import Callable

EVENT_DEDUP_TTL = 60.0


class DedupCache:
    """Seen event ids with lazy expiry; swept on every lookup."""

    def __init__(
        self,
        ttl: float = EVENT_DEDUP_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._seen: dict[str, float] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def is_processed(self, event_id: str | None) -> bool:
        """Return ``True`` for a re-delivery, otherwise record *event_id*."""
        if not event_id:
            return False

        now = self._clock()
        self._sweep(now)
        if event_id in self._seen:
            return True
        self._seen[event_id] = now
        return False

    def _sweep(self, now: float) -> None:
        expired = [eid for eid, seen_at in self._seen.items() if now - seen_at > self._ttl]
        for eid in expired:
            del self._seen[eid]

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._seen
