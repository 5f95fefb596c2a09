"""Cursor policy, in-flight tracking and checkpointing (core domain).

The cursor is a Jetstream position in microseconds since the epoch. Events
are read in order but finish out of order, so the checkpoint must never pass
a frame whose processing is still running. ``CursorTracker`` keeps the
positions in flight and only reports a position every earlier frame has
completed.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from battlemaster.core.ports import CursorStorePort

LOGGER = logging.getLogger(__name__)


def current_time_us() -> int:
    return time.time_ns() // 1000


def format_cursor(cursor: int) -> str:
    """Return ``cursor`` with its ISO timestamp, for log lines."""

    moment = datetime.fromtimestamp(cursor / 1_000_000, tz=timezone.utc)
    return f"{cursor} ({moment.isoformat()})"


class StartupPolicy(str, Enum):
    """How the stored cursor is used at startup.

    RESUME replays everything since the last checkpoint. SKIP_TO_NOW drops
    the gap and starts from the current time whenever the stored position is
    in the past.
    """

    RESUME = "resume"
    SKIP_TO_NOW = "skip_to_now"


def resolve_startup_cursor(stored: int, now_us: int, policy: StartupPolicy) -> int:
    if policy is StartupPolicy.SKIP_TO_NOW and stored < now_us:
        LOGGER.info("Cursor needs update. Current: %s, setting to: %s", stored, format_cursor(now_us))
        return now_us
    LOGGER.info("Resuming from cursor %s", format_cursor(stored))
    return stored


class CursorTracker:
    """Tracks which feed positions are safe to checkpoint."""

    def __init__(self, start: int) -> None:
        self._position = start
        self._highest_seen = start
        self._in_flight: Counter[int] = Counter()

    @property
    def in_flight(self) -> int:
        return sum(self._in_flight.values())

    def begin(self, time_us: int) -> None:
        self._in_flight[time_us] += 1
        if time_us > self._highest_seen:
            self._highest_seen = time_us

    def finish(self, time_us: int) -> None:
        remaining = self._in_flight[time_us] - 1
        if remaining > 0:
            self._in_flight[time_us] = remaining
        else:
            del self._in_flight[time_us]

    @property
    def position(self) -> int:
        """Highest position with no unfinished work at or before it.

        Never decreases, even if a replayed frame older than the current
        position is in flight.
        """

        if self._in_flight:
            candidate = min(self._in_flight) - 1
        else:
            candidate = self._highest_seen
        if candidate > self._position:
            self._position = candidate
        return self._position


class Checkpointer:
    """Writes the tracker position to the cursor store."""

    def __init__(
        self,
        store: CursorStorePort,
        tracker: CursorTracker,
        is_connected: Callable[[], bool],
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._is_connected = is_connected
        self._last_saved: Optional[int] = None

    @property
    def last_saved(self) -> Optional[int]:
        return self._last_saved

    def save(self) -> Optional[int]:
        """Periodic save; skipped while the feed is not connected."""

        if not self._is_connected():
            LOGGER.debug("Skipping cursor update while disconnected")
            return None
        return self._write()

    def flush(self) -> Optional[int]:
        """Final save during shutdown, regardless of connection state."""

        return self._write()

    def _write(self) -> Optional[int]:
        position = self._tracker.position
        if self._last_saved is not None and position <= self._last_saved:
            return None
        LOGGER.info("Updating cursor to: %s", format_cursor(position))
        self._store.save_cursor(position)
        self._last_saved = position
        return position
