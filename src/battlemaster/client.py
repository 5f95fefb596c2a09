"""HTTP client factory for battlemaster.

One AsyncClient is shared by the session and the labeler for the lifetime of
the process; the caller owns it and closes it on shutdown.
"""

from __future__ import annotations

import logging

import httpx

from battlemaster import __version__

USER_AGENT = f"battlemaster/{__version__}"


def build_client(base_url: str, timeout: float = 10.0) -> httpx.AsyncClient:
    """Create an httpx client bound to the authority's ATProto service."""

    logging.getLogger(__name__).info("Initializing ATProto client for %s", base_url)

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
    )
