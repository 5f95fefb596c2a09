"""Graceful shutdown coordination."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from battlemaster.core.connection import DEFAULT_SHUTDOWN_DEADLINE, ConnectionManager
from battlemaster.core.cursor import Checkpointer
from battlemaster.core.ports import CursorStorePort
from battlemaster.core.processor import LabelProcessor

LOGGER = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Runs the shutdown sequence exactly once.

    Sequence: stop periodic tasks, drain the connection manager within the
    deadline, flush the cursor, close the store, report. Each step logs its
    own failure and the sequence continues.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        checkpointer: Checkpointer,
        store: CursorStorePort,
        *,
        processor: Optional[LabelProcessor] = None,
        deadline: float = DEFAULT_SHUTDOWN_DEADLINE,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        self._manager = manager
        self._checkpointer = checkpointer
        self._store = store
        self._processor = processor
        self._deadline = deadline
        self._stop = stop if stop is not None else asyncio.Event()
        self._requested = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def stop(self) -> asyncio.Event:
        """Set once shutdown begins; periodic tasks watch it."""

        return self._stop

    @property
    def requested(self) -> bool:
        return self._requested.is_set()

    def request(self, reason: str = "shutdown requested") -> None:
        """Ask for shutdown. Safe to call from a signal handler, repeatedly."""

        if self._requested.is_set():
            LOGGER.info("Shutdown already in progress, ignoring %s", reason)
            return
        self._reason = reason
        LOGGER.info("Initiating shutdown sequence (%s)...", reason)
        self._requested.set()

    async def run(self) -> int:
        """Wait for a shutdown request or a reader failure, then drain.

        Returns the process exit code.
        """

        exit_code = 0
        watcher = asyncio.ensure_future(self._manager.join())
        requested = asyncio.ensure_future(self._requested.wait())
        try:
            await asyncio.wait({watcher, requested}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            requested.cancel()

        if watcher.done() and not self._requested.is_set():
            error = None if watcher.cancelled() else watcher.exception()
            if error is not None:
                LOGGER.critical("Feed reader failed: %s", error)
            else:
                LOGGER.error("Feed reader stopped unexpectedly")
            exit_code = 1
            self.request("feed reader stopped")

        await self._drain()

        if not watcher.done():
            watcher.cancel()
        await asyncio.gather(watcher, requested, return_exceptions=True)
        return exit_code

    async def _drain(self) -> None:
        self._stop.set()

        graceful = False
        try:
            graceful = await self._manager.shutdown(self._deadline)
        except Exception:
            LOGGER.exception("Error while shutting down the connection manager")

        try:
            position = self._checkpointer.flush()
            if position is not None:
                LOGGER.info("Final cursor flushed at %s", position)
        except Exception:
            LOGGER.exception("Error while flushing the cursor")

        try:
            self._store.close()
        except Exception:
            LOGGER.exception("Error while closing the cursor store")

        if self._processor is not None:
            summary = ", ".join(
                f"{outcome.value}={count}" for outcome, count in sorted(
                    self._processor.outcomes.items(), key=lambda item: item[0].value
                )
            )
            LOGGER.info("Processed events: %s", summary or "none")

        if graceful:
            LOGGER.info("Shutdown completed successfully")
        else:
            LOGGER.warning("Shutdown completed after forcing the connection closed")
