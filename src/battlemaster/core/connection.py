"""Connection lifecycle for the upstream feed.

The manager owns one subscription: it connects at the tracked cursor,
dispatches every frame to the label pipeline as its own task, reconnects
with backoff when the link drops and drains in-flight work on shutdown.

State machine::

    disconnected -> connecting -> connected <-> reconnecting
    any state -> shutting_down -> closed
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Set

from battlemaster.core.backoff import BackoffPolicy
from battlemaster.core.cursor import CursorTracker
from battlemaster.core.errors import FeedError, FeedRejectedError, FeedTransportError
from battlemaster.core.models import ConnectionState, FeedMessage
from battlemaster.core.ports import FeedConnection, FeedPort
from battlemaster.core.processor import LabelProcessor

LOGGER = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_DEADLINE = 7.0


class ConnectionManager:
    """Keeps the feed subscription alive and feeds the label pipeline."""

    def __init__(
        self,
        feed: FeedPort,
        processor: LabelProcessor,
        tracker: CursorTracker,
        backoff: BackoffPolicy,
        *,
        max_in_flight: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be positive")
        self._feed = feed
        self._processor = processor
        self._tracker = tracker
        self._backoff = backoff
        self._clock = clock
        self._state = ConnectionState.DISCONNECTED
        self._connection: Optional[FeedConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(max_in_flight)
        self._closing = asyncio.Event()
        self._graceful = True

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        LOGGER.info("Connection state %s -> %s", self._state.value, state.value)
        self._state = state

    async def start(self) -> None:
        """Open the subscription and start the background reader.

        A rejected handshake on this first attempt propagates to the caller.
        A transport failure is retried in the background instead.
        """

        if self._state is not ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.CONNECTING)
        connection: Optional[FeedConnection] = None
        try:
            connection = await self._feed.open(self._tracker.position)
        except FeedRejectedError:
            self._set_state(ConnectionState.CLOSED)
            raise
        except FeedTransportError as exc:
            LOGGER.warning("Initial connection failed, will retry: %s", exc)
            self._set_state(ConnectionState.RECONNECTING)
        else:
            self._connection = connection
            self._set_state(ConnectionState.CONNECTED)
        self._reader = asyncio.create_task(self._read_loop(connection), name="feed-reader")

    async def join(self) -> None:
        """Wait for the reader to stop; re-raises the error that killed it."""

        if self._reader is not None:
            await asyncio.shield(self._reader)

    async def shutdown(self, deadline: float = DEFAULT_SHUTDOWN_DEADLINE) -> bool:
        """Stop reading, drain in-flight events and close the feed.

        Waits up to ``deadline`` seconds, then cancels whatever is left.
        Always ends in ``closed``. Returns True if nothing had to be cancelled.
        """

        if self._closing.is_set():
            return self._graceful
        self._closing.set()
        self._set_state(ConnectionState.SHUTTING_DOWN)

        loop = asyncio.get_running_loop()
        ends_at = loop.time() + deadline
        graceful = True

        connection = self._connection
        if connection is not None:
            try:
                await asyncio.wait_for(connection.close(), timeout=deadline)
            except asyncio.TimeoutError:
                graceful = False
                LOGGER.warning("Feed did not close within %.1fs", deadline)
            except Exception:
                LOGGER.exception("Error while closing feed connection")

        pending: Set[asyncio.Task] = set(self._tasks)
        if self._reader is not None and not self._reader.done():
            pending.add(self._reader)
        if pending:
            remaining = max(0.0, ends_at - loop.time())
            _, still_running = await asyncio.wait(pending, timeout=remaining)
            if still_running:
                graceful = False
                LOGGER.warning("Shutdown deadline reached, abandoning %s tasks", len(still_running))
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        self._graceful = graceful
        self._set_state(ConnectionState.CLOSED)
        return graceful

    async def _read_loop(self, connection: Optional[FeedConnection]) -> None:
        attempt = 0
        while not self._closing.is_set():
            if connection is None:
                if self._backoff.exhausted(attempt):
                    raise FeedTransportError(f"gave up reconnecting after {attempt} attempts")
                delay = self._backoff.delay(attempt)
                attempt += 1
                LOGGER.info("Reconnecting in %.1fs (attempt %s)", delay, attempt)
                if await self._sleep_unless_closing(delay):
                    break
                try:
                    connection = await self._feed.open(self._tracker.position)
                except FeedError as exc:
                    LOGGER.warning("Reconnect attempt %s failed: %s", attempt, exc)
                    continue
                if self._closing.is_set():
                    await self._close_quietly(connection)
                    break
                self._connection = connection
                self._set_state(ConnectionState.CONNECTED)

            connected_at = self._clock()
            try:
                await self._consume(connection)
            except FeedTransportError as exc:
                LOGGER.warning("Feed connection lost: %s", exc)
            finally:
                self._connection = None
                await self._close_quietly(connection)
            connection = None

            if self._closing.is_set():
                break
            if self._clock() - connected_at >= self._backoff.reset_after:
                attempt = 0
            self._set_state(ConnectionState.RECONNECTING)

    async def _consume(self, connection: FeedConnection) -> None:
        async for message in connection.messages():
            if self._closing.is_set():
                return
            await self._dispatch(message)

    async def _dispatch(self, message: FeedMessage) -> None:
        if message.time_us is not None:
            self._tracker.begin(message.time_us)
        if message.event is None:
            if message.time_us is not None:
                self._tracker.finish(message.time_us)
            return

        await self._slots.acquire()
        if self._closing.is_set():
            # Never started, so its position stays in flight.
            self._slots.release()
            return
        task = asyncio.create_task(self._process(message))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()

    async def _process(self, message: FeedMessage) -> None:
        event = message.event
        try:
            await self._processor.handle(event)
        except asyncio.CancelledError:
            LOGGER.warning("Abandoned in-flight event from %s", event.actor)
            raise
        except Exception:
            LOGGER.exception("Error processing event from %s", event.actor)
        if message.time_us is not None:
            self._tracker.finish(message.time_us)

    async def _sleep_unless_closing(self, delay: float) -> bool:
        """Sleep for ``delay``; return True if shutdown started meanwhile."""

        try:
            await asyncio.wait_for(self._closing.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    async def _close_quietly(connection: FeedConnection) -> None:
        try:
            await connection.close()
        except Exception:
            LOGGER.exception("Error while closing feed connection")
