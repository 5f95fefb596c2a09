from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidStatus, InvalidURI

from battlemaster.adapters import jetstream_feed
from battlemaster.adapters.jetstream_feed import JetstreamFeed
from battlemaster.core.errors import FeedRejectedError, FeedTransportError

COLLECTION = "app.bsky.feed.like"
ENDPOINT = "wss://jetstream.test/subscribe"

LIKE_FRAME = json.dumps(
    {
        "did": "did:plc:user1",
        "time_us": 1725911162329308,
        "kind": "commit",
        "commit": {
            "rev": "3l3qo2vutsw2b",
            "operation": "create",
            "collection": COLLECTION,
            "rkey": "3l3qo2vuowo2b",
            "record": {
                "$type": COLLECTION,
                "subject": {"uri": "at://did:plc:authority/app.bsky.feed.post/3jzfcijpj2z2a"},
            },
        },
    }
)


class ScriptedWebSocket:
    """Yields ``frames`` then raises ``error`` from iteration."""

    def __init__(self, frames, error=None) -> None:
        self._frames = list(frames)
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


def _patch_connect(monkeypatch, *, websocket=None, error=None) -> list:
    urls: list = []

    async def fake_connect(url, **kwargs):
        urls.append(url)
        if error is not None:
            raise error
        return websocket

    monkeypatch.setattr(jetstream_feed.websockets, "connect", fake_connect)
    return urls


def _open(cursor=None):
    return asyncio.run(JetstreamFeed(ENDPOINT, COLLECTION).open(cursor))


def _drain(connection) -> list:
    async def collect():
        return [message async for message in connection.messages()]

    return asyncio.run(collect())


def test_client_error_handshake_is_rejected(monkeypatch) -> None:
    _patch_connect(monkeypatch, error=InvalidStatus(SimpleNamespace(status_code=401)))

    with pytest.raises(FeedRejectedError, match="HTTP 401"):
        _open()


def test_server_error_handshake_is_transient(monkeypatch) -> None:
    _patch_connect(monkeypatch, error=InvalidStatus(SimpleNamespace(status_code=503)))

    with pytest.raises(FeedTransportError, match="HTTP 503"):
        _open()


def test_invalid_uri_is_rejected(monkeypatch) -> None:
    _patch_connect(monkeypatch, error=InvalidURI("jetstream.test", "scheme isn't ws or wss"))

    with pytest.raises(FeedRejectedError, match="invalid Jetstream URL"):
        _open()


def test_unreachable_host_is_transient(monkeypatch) -> None:
    _patch_connect(monkeypatch, error=OSError("connection refused"))

    with pytest.raises(FeedTransportError, match="connection refused"):
        _open()


def test_open_timeout_is_transient(monkeypatch) -> None:
    _patch_connect(monkeypatch, error=asyncio.TimeoutError())

    with pytest.raises(FeedTransportError):
        _open()


def test_open_subscribes_from_cursor(monkeypatch) -> None:
    urls = _patch_connect(monkeypatch, websocket=ScriptedWebSocket([]))

    _open(cursor=1725911162329307)

    assert urls == [f"{ENDPOINT}?wantedCollections={COLLECTION}&cursor=1725911162329307"]


def test_abnormal_close_mid_stream_is_transient(monkeypatch) -> None:
    websocket = ScriptedWebSocket([LIKE_FRAME], error=ConnectionClosedError(None, None))
    _patch_connect(monkeypatch, websocket=websocket)
    connection = _open()
    received = []

    async def collect() -> None:
        async for message in connection.messages():
            received.append(message)

    with pytest.raises(FeedTransportError, match="connection closed"):
        asyncio.run(collect())

    assert [message.event.actor for message in received] == ["did:plc:user1"]


def test_socket_error_mid_stream_is_transient(monkeypatch) -> None:
    websocket = ScriptedWebSocket([], error=OSError("connection reset by peer"))
    _patch_connect(monkeypatch, websocket=websocket)
    connection = _open()

    with pytest.raises(FeedTransportError, match="connection reset by peer"):
        _drain(connection)


def test_clean_end_of_stream_returns_decoded_messages(monkeypatch) -> None:
    websocket = ScriptedWebSocket([LIKE_FRAME, "not json"])
    _patch_connect(monkeypatch, websocket=websocket)
    connection = _open()

    messages = _drain(connection)
    asyncio.run(connection.close())

    assert [message.time_us for message in messages] == [1725911162329308]
    assert websocket.closed
