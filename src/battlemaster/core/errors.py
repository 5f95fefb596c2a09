"""Exception types shared by the core and adapters."""

from __future__ import annotations


class BattlemasterError(Exception):
    """Base class for all battlemaster errors."""


class ConfigError(BattlemasterError):
    """Configuration is missing or invalid. Fatal at startup."""


class AuthError(BattlemasterError):
    """The authority could not authenticate with the ATProto service."""


class FeedError(BattlemasterError):
    """Base class for upstream feed failures."""


class FeedRejectedError(FeedError):
    """The feed refused the subscription (bad URI, 4xx handshake)."""


class FeedTransportError(FeedError):
    """The feed connection dropped or could not be reached."""


class CategoryError(BattlemasterError):
    """A label identifier does not map to a known category."""


class LabelApplicationError(BattlemasterError):
    """The labeling service rejected or failed a label request."""
