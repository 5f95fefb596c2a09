from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from battlemaster.adapters.atproto_session import AtpSession, authorize
from battlemaster.adapters.ozone_labeler import OzoneLabeler
from battlemaster.core.errors import AuthError, LabelApplicationError

LABELER_DID = "did:plc:7iza6de2dwap2sbkpav7c6c6"


def _session() -> AtpSession:
    return AtpSession(did=LABELER_DID, handle="battlemaster.test", access_jwt="access-1", refresh_jwt="refresh-1")


def _session_body(access: str = "access-1", refresh: str = "refresh-1") -> dict:
    return {"did": LABELER_DID, "handle": "battlemaster.test", "accessJwt": access, "refreshJwt": refresh}


def _run_with(handler, coro_factory):
    async def _run():
        async with httpx.AsyncClient(base_url="https://pds.test", transport=httpx.MockTransport(handler)) as client:
            return await coro_factory(client)

    return asyncio.run(_run())


def test_apply_label_emits_label_event() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 1})

    _run_with(handler, lambda client: OzoneLabeler(client, _session(), LABELER_DID).apply_label("did:plc:user1", "pvp"))

    assert len(requests) == 1
    request = requests[0]
    assert request.url.path == "/xrpc/tools.ozone.moderation.emitEvent"
    assert request.headers["authorization"] == "Bearer access-1"
    assert request.headers["atproto-proxy"] == f"{LABELER_DID}#atproto_labeler"
    body = json.loads(request.content)
    assert body["event"]["createLabelVals"] == ["pvp"]
    assert body["subject"] == {"$type": "com.atproto.admin.defs#repoRef", "did": "did:plc:user1"}
    assert body["createdBy"] == LABELER_DID


def test_expired_token_is_refreshed_once() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path.endswith("refreshSession"):
            return httpx.Response(200, json=_session_body(access="access-2", refresh="refresh-2"))
        if request.headers["authorization"] == "Bearer access-1":
            return httpx.Response(400, json={"error": "ExpiredToken", "message": "Token has expired"})
        return httpx.Response(200, json={})

    session = _session()
    _run_with(handler, lambda client: OzoneLabeler(client, session, LABELER_DID).apply_label("did:plc:user1", "pvp"))

    assert paths == [
        "/xrpc/tools.ozone.moderation.emitEvent",
        "/xrpc/com.atproto.server.refreshSession",
        "/xrpc/tools.ozone.moderation.emitEvent",
    ]
    assert session.access_jwt == "access-2"


def test_concurrent_expiry_refreshes_session_once() -> None:
    paths: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        # Hold every response briefly so both labels are in flight together.
        await asyncio.sleep(0.01)
        if request.url.path.endswith("refreshSession"):
            return httpx.Response(200, json=_session_body(access="access-2", refresh="refresh-2"))
        if request.headers["authorization"] == "Bearer access-1":
            return httpx.Response(400, json={"error": "ExpiredToken", "message": "Token has expired"})
        return httpx.Response(200, json={})

    session = _session()

    async def label_both(client: httpx.AsyncClient) -> None:
        labeler = OzoneLabeler(client, session, LABELER_DID)
        await asyncio.gather(
            labeler.apply_label("did:plc:user1", "pvp"),
            labeler.apply_label("did:plc:user2", "pve"),
        )

    _run_with(handler, label_both)

    assert paths.count("/xrpc/com.atproto.server.refreshSession") == 1
    assert paths.count("/xrpc/tools.ozone.moderation.emitEvent") == 4
    assert session.access_jwt == "access-2"


def test_rejection_raises_label_application_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(LabelApplicationError, match="HTTP 500"):
        _run_with(handler, lambda client: OzoneLabeler(client, _session(), LABELER_DID).apply_label("did:plc:user1", "pvp"))


def test_transport_failure_raises_label_application_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(LabelApplicationError, match="unreachable"):
        _run_with(handler, lambda client: OzoneLabeler(client, _session(), LABELER_DID).apply_label("did:plc:user1", "pvp"))


def test_authorize_returns_session() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"identifier": "battlemaster.test", "password": "pw"}
        return httpx.Response(200, json=_session_body())

    session = _run_with(handler, lambda client: authorize(client, "battlemaster.test", "pw"))

    assert session.did == LABELER_DID
    assert session.access_jwt == "access-1"


def test_authorize_failure_is_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "AuthenticationRequired", "message": "Invalid identifier or password"})

    with pytest.raises(AuthError, match="Invalid identifier or password"):
        _run_with(handler, lambda client: authorize(client, "battlemaster.test", "wrong"))


def test_authorize_requires_credentials() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(AuthError, match="BSKY_HANDLE and BSKY_PASSWORD"):
        _run_with(handler, lambda client: authorize(client, "", ""))
