"""ATProto session handling for the labeling authority.

Logs in with the authority handle and app password and keeps the access
token fresh. Only the labeler adapter uses the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from battlemaster.core.errors import AuthError

LOGGER = logging.getLogger(__name__)

CREATE_SESSION = "/xrpc/com.atproto.server.createSession"
REFRESH_SESSION = "/xrpc/com.atproto.server.refreshSession"


@dataclass
class AtpSession:
    """Authenticated session; tokens are replaced in place on refresh."""

    did: str
    handle: str
    access_jwt: str = field(repr=False)
    refresh_jwt: str = field(repr=False)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_jwt}"}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return f"{body.get('error', 'Error')}: {body.get('message', '')}".strip()
    return str(body)[:200]


def _session_from(body: dict) -> tuple[str, str, str, str]:
    try:
        return body["did"], body["handle"], body["accessJwt"], body["refreshJwt"]
    except (KeyError, TypeError) as exc:
        raise AuthError(f"unexpected session response: missing {exc}") from exc


async def authorize(client: httpx.AsyncClient, handle: str, password: str) -> AtpSession:
    """Log in and return a session. Any failure is fatal for startup."""

    if not handle or not password:
        raise AuthError("BSKY_HANDLE and BSKY_PASSWORD must be set in the configuration")
    try:
        response = await client.post(CREATE_SESSION, json={"identifier": handle, "password": password})
    except httpx.HTTPError as exc:
        raise AuthError(f"ATP login failed: {exc}") from exc
    if response.status_code != 200:
        raise AuthError(f"ATP login failed: {_error_detail(response)}")

    did, session_handle, access_jwt, refresh_jwt = _session_from(response.json())
    LOGGER.info("Logged in to ATP successfully as %s", session_handle)
    return AtpSession(did=did, handle=session_handle, access_jwt=access_jwt, refresh_jwt=refresh_jwt)


async def refresh(client: httpx.AsyncClient, session: AtpSession) -> None:
    """Exchange the refresh token for new tokens."""

    try:
        response = await client.post(
            REFRESH_SESSION,
            headers={"Authorization": f"Bearer {session.refresh_jwt}"},
        )
    except httpx.HTTPError as exc:
        raise AuthError(f"ATP session refresh failed: {exc}") from exc
    if response.status_code != 200:
        raise AuthError(f"ATP session refresh failed: {_error_detail(response)}")

    _, _, session.access_jwt, session.refresh_jwt = _session_from(response.json())
    LOGGER.info("Refreshed ATP session for %s", session.handle)
