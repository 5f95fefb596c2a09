"""Jetstream-to-core message mapping adapter.

This keeps Jetstream's JSON layout out of the core pipeline.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Union

from battlemaster.core.models import FeedMessage, TriggerEvent

LOGGER = logging.getLogger(__name__)


def _time_us(frame: dict) -> Optional[int]:
    value = frame.get("time_us")
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _subject_uri(record: Any) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    subject = record.get("subject")
    if not isinstance(subject, dict):
        return None
    uri = subject.get("uri")
    return uri if isinstance(uri, str) else None


def build_message(frame: Any, collection: str) -> Optional[FeedMessage]:
    """Build a FeedMessage from one decoded Jetstream frame.

    Only ``create`` commits in ``collection`` become trigger events. Other
    frames keep their position so the cursor can move past them. Returns None
    for frames that are not JSON objects.
    """

    if not isinstance(frame, dict):
        return None
    time_us = _time_us(frame)

    if frame.get("kind") != "commit":
        return FeedMessage(time_us=time_us, event=None)
    commit = frame.get("commit")
    if not isinstance(commit, dict):
        return FeedMessage(time_us=time_us, event=None)
    if commit.get("operation") != "create" or commit.get("collection") != collection:
        return FeedMessage(time_us=time_us, event=None)

    actor = frame.get("did")
    revision = commit.get("rev")
    # Structural validation of actor and subject happens in the processor so
    # malformed likes are logged in one place.
    event = TriggerEvent(
        actor=actor if isinstance(actor, str) else "",
        revision=revision if isinstance(revision, str) else "",
        subject_uri=_subject_uri(commit.get("record")),
        time_us=time_us or 0,
    )
    return FeedMessage(time_us=time_us, event=event)


def decode_frame(raw: Union[str, bytes], collection: str) -> Optional[FeedMessage]:
    """Decode raw websocket data; undecodable frames are logged and skipped."""

    try:
        frame = json.loads(raw)
    except ValueError:
        LOGGER.error("Dropping undecodable feed frame (%s bytes)", len(raw))
        return None
    return build_message(frame, collection)
