"""Fixed-interval background loops."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

LOGGER = logging.getLogger(__name__)


async def run_periodically(
    interval_seconds: float,
    stop: asyncio.Event,
    action: Callable[[], object],
    *,
    name: str,
) -> None:
    """Call ``action`` every ``interval_seconds`` until ``stop`` is set.

    A failing action is logged and the loop keeps going; periodic chores must
    never take the service down.
    """

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
        if stop.is_set():
            break
        try:
            action()
        except Exception:
            LOGGER.exception("Periodic task %s failed", name)
