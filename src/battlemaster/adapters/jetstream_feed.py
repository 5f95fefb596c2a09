"""Jetstream websocket feed adapter.

Implements the core FeedPort over ``websockets``. Library exceptions are
translated at this boundary: a refused handshake becomes FeedRejectedError,
everything network-shaped becomes FeedTransportError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosedError, InvalidStatus, InvalidURI, WebSocketException

from battlemaster.adapters.jetstream_mapper import decode_frame
from battlemaster.core.errors import FeedRejectedError, FeedTransportError
from battlemaster.core.models import FeedMessage

LOGGER = logging.getLogger(__name__)

# Jetstream frames are small JSON documents; the cap guards against garbage.
MAX_FRAME_BYTES = 1 << 20


def build_subscribe_url(endpoint: str, collection: str, cursor: Optional[int]) -> str:
    """Return the subscription URL with collection and cursor parameters."""

    parts = urlsplit(endpoint)
    params = [("wantedCollections", collection)]
    if cursor is not None:
        params.append(("cursor", str(cursor)))
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class JetstreamConnection:
    """One open Jetstream websocket."""

    def __init__(self, websocket, collection: str) -> None:
        self._websocket = websocket
        self._collection = collection

    async def messages(self) -> AsyncIterator[FeedMessage]:
        try:
            async for raw in self._websocket:
                message = decode_frame(raw, self._collection)
                if message is not None:
                    yield message
        except ConnectionClosedError as exc:
            raise FeedTransportError(f"connection closed: {exc}") from exc
        except (OSError, WebSocketException) as exc:
            raise FeedTransportError(str(exc)) from exc

    async def close(self) -> None:
        await self._websocket.close()


class JetstreamFeed:
    """Opens Jetstream subscriptions for one collection."""

    def __init__(
        self,
        endpoint: str,
        collection: str,
        *,
        open_timeout: float = 10.0,
        ping_interval: float = 20.0,
    ) -> None:
        self._endpoint = endpoint
        self._collection = collection
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval

    async def open(self, cursor: Optional[int]) -> JetstreamConnection:
        url = build_subscribe_url(self._endpoint, self._collection, cursor)
        LOGGER.info("Connecting to Jetstream at %s", url)
        try:
            websocket = await websockets.connect(
                url,
                open_timeout=self._open_timeout,
                ping_interval=self._ping_interval,
                max_size=MAX_FRAME_BYTES,
            )
        except InvalidURI as exc:
            raise FeedRejectedError(f"invalid Jetstream URL: {exc}") from exc
        except InvalidStatus as exc:
            status = exc.response.status_code
            # 4xx means our request is wrong; 5xx is the server having a bad day.
            if 400 <= status < 500:
                raise FeedRejectedError(f"Jetstream rejected subscription with HTTP {status}") from exc
            raise FeedTransportError(f"Jetstream handshake failed with HTTP {status}") from exc
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise FeedTransportError(f"could not reach Jetstream: {exc}") from exc
        return JetstreamConnection(websocket, self._collection)
