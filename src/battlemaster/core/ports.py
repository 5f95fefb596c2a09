"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the cursor store, the labeling
service and the upstream feed so that the core can be reused with
different backends and faked in tests.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol

from battlemaster.core.models import FeedMessage


class CursorStorePort(Protocol):
    """Durable single-value checkpoint of stream position."""

    def load_cursor(self, default: int) -> int:
        ...

    def save_cursor(self, cursor: int) -> None:
        ...

    def close(self) -> None:
        ...


class LabelerPort(Protocol):
    """Create-or-update label requests against the labeling service."""

    async def apply_label(self, subject_did: str, label: str) -> None:
        ...


class FeedConnection(Protocol):
    """One open subscription."""

    def messages(self) -> AsyncIterator[FeedMessage]:
        ...

    async def close(self) -> None:
        ...


class FeedPort(Protocol):
    """Factory for feed subscriptions starting at a cursor."""

    async def open(self, cursor: Optional[int]) -> FeedConnection:
        ...
