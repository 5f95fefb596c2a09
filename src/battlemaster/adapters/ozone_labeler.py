"""Ozone labeling-service adapter.

Implements the core LabelerPort by emitting a moderation label event through
the authority's PDS, proxied to the labeler service.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from battlemaster.adapters.atproto_session import AtpSession, refresh
from battlemaster.core.errors import AuthError, LabelApplicationError

LOGGER = logging.getLogger(__name__)

EMIT_EVENT = "/xrpc/tools.ozone.moderation.emitEvent"


def build_label_event(subject_did: str, label: str, created_by: str) -> dict:
    """Return the emitEvent body that applies ``label`` to an account."""

    return {
        "event": {
            "$type": "tools.ozone.moderation.defs#modEventLabel",
            "createLabelVals": [label],
            "negateLabelVals": [],
        },
        "subject": {
            "$type": "com.atproto.admin.defs#repoRef",
            "did": subject_did,
        },
        "createdBy": created_by,
    }


class OzoneLabeler:
    """Labeler adapter that applies labels via tools.ozone.moderation."""

    def __init__(self, client: httpx.AsyncClient, session: AtpSession, labeler_did: str) -> None:
        self._client = client
        self._session = session
        self._labeler_did = labeler_did
        self._refresh_lock = asyncio.Lock()

    def _headers(self) -> dict[str, str]:
        headers = self._session.auth_headers()
        # The PDS forwards the call to the labeler's own service endpoint.
        headers["atproto-proxy"] = f"{self._labeler_did}#atproto_labeler"
        return headers

    async def _post(self, body: dict) -> httpx.Response:
        try:
            return await self._client.post(EMIT_EVENT, json=body, headers=self._headers())
        except httpx.HTTPError as exc:
            raise LabelApplicationError(f"labeling service unreachable: {exc}") from exc

    async def _refresh(self, stale_token: str) -> None:
        async with self._refresh_lock:
            # Another request already rotated the tokens while we waited.
            if self._session.access_jwt != stale_token:
                return
            LOGGER.info("Access token expired, refreshing session")
            try:
                await refresh(self._client, self._session)
            except AuthError as exc:
                raise LabelApplicationError(str(exc)) from exc

    async def apply_label(self, subject_did: str, label: str) -> None:
        """Create or update ``label`` on ``subject_did``."""

        body = build_label_event(subject_did, label, self._session.did)
        token = self._session.access_jwt
        response = await self._post(body)
        if _is_expired(response):
            await self._refresh(token)
            response = await self._post(body)

        if response.status_code != 200:
            raise LabelApplicationError(
                f"labeling service returned HTTP {response.status_code}: {response.text[:200]}"
            )


def _is_expired(response: httpx.Response) -> bool:
    if response.status_code not in (400, 401):
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("error") == "ExpiredToken"
