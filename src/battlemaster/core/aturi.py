"""Helpers for working with AT-URIs, DIDs and record keys."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

AT_URI_PREFIX = "at://"
RKEY_LENGTH = 13

_DID_RE = re.compile(r"^did:[a-z]+:[a-zA-Z0-9._:%-]+$")
# TIDs are base32-sortable; marker posts always use them as record keys.
_RKEY_RE = re.compile(r"^[a-zA-Z0-9._~:-]+$")


@dataclass(frozen=True)
class AtUri:
    authority: str
    collection: Optional[str]
    rkey: Optional[str]


def is_valid_did(value: object) -> bool:
    return isinstance(value, str) and bool(_DID_RE.match(value))


def is_valid_rkey(value: object) -> bool:
    """Return True for a 13 character record key (the marker post format)."""

    return isinstance(value, str) and len(value) == RKEY_LENGTH and bool(_RKEY_RE.match(value))


def parse_at_uri(uri: str) -> Optional[AtUri]:
    """Split ``at://authority/collection/rkey`` into its parts.

    Returns None when the value is not an AT-URI at all. Missing trailing
    segments are returned as None so callers can decide how strict to be.
    """

    if not isinstance(uri, str) or not uri.startswith(AT_URI_PREFIX):
        return None
    path = uri[len(AT_URI_PREFIX) :]
    # Query strings and fragments are not part of record identity.
    path = path.split("?", 1)[0].split("#", 1)[0]
    parts = path.split("/")
    authority = parts[0]
    if not authority:
        return None
    collection = parts[1] if len(parts) > 1 and parts[1] else None
    rkey = parts[-1] if len(parts) > 2 and parts[-1] else None
    return AtUri(authority=authority, collection=collection, rkey=rkey)

