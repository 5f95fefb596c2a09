"""Deduplication cache (core domain).

Jetstream delivers at least once: a reconnect replays frames from the saved
cursor, so the same like can arrive twice. The cache remembers recently
handled events for a fixed retention window. It is process-local and starts
empty on every restart.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict

from battlemaster.core.models import TriggerEvent

LOGGER = logging.getLogger(__name__)


def identifier_for(event: TriggerEvent) -> str:
    """Return the dedup identity of an event.

    Only actor and revision take part: receipt time differs between the
    original delivery and a replay, so it is kept out of the identity.
    """

    return f"{event.actor}:{event.revision}"


class DedupCache:
    """Time-bounded set of event identifiers."""

    def __init__(
        self,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retention = retention_seconds
        self._clock = clock
        self._entries: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def seen(self, event_id: str) -> bool:
        """Return True if ``event_id`` was recorded within the retention window."""

        inserted_at = self._entries.get(event_id)
        if inserted_at is None:
            return False
        if self._clock() - inserted_at >= self._retention:
            del self._entries[event_id]
            return False
        return True

    def record(self, event_id: str) -> None:
        """Remember ``event_id``; the first insertion time is kept."""

        self._entries.setdefault(event_id, self._clock())

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""

        cutoff = self._clock() - self._retention
        expired = [key for key, inserted_at in self._entries.items() if inserted_at <= cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            LOGGER.debug("Dedup sweep removed %s entries, %s remain", len(expired), len(self._entries))
        return len(expired)
