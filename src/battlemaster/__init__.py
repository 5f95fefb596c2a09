"""Battlemaster: a Bluesky labeler driven by likes on marker posts."""

__version__ = "0.1.0"
