"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to Jetstream or ATProto wire types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

CATEGORIES: Tuple[str, ...] = ("pvp", "pve", "rp")


@dataclass(frozen=True)
class TriggerEvent:
    """One inbound like, reduced to the fields the pipeline needs."""

    actor: str
    revision: str
    subject_uri: Optional[str]
    time_us: int


@dataclass(frozen=True)
class FeedMessage:
    """A decoded feed frame.

    ``event`` is None for frames that can never trigger a label (identity or
    account frames, deletes, other collections). Those frames still carry a
    position and move the cursor.
    """

    time_us: Optional[int]
    event: Optional[TriggerEvent]


@dataclass(frozen=True)
class Locale:
    lang: str
    name: str
    description: str


@dataclass(frozen=True)
class LabelDefinition:
    """Catalog entry tying a marker post record key to a label."""

    rkey: str
    identifier: str
    category: str
    locales: Tuple[Locale, ...]
    severity: str = "inform"
    blurs: str = "none"
    default_setting: str = "warn"
    adult_only: bool = False


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


class Outcome(str, Enum):
    """Result of running one event through the label pipeline."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    SELF_TRIGGER = "self_trigger"
    NOT_OWNED = "not_owned"
    NO_TRIGGER = "no_trigger"
    UNMATCHED = "unmatched"
    FAILED = "failed"
