from __future__ import annotations

import asyncio
import json
import signal

from battlemaster import app, settings
from battlemaster.adapters.atproto_session import AtpSession
from fakes import AUTHORITY, PVP_RKEY

ENV = {
    "DID": AUTHORITY,
    "SIGNING_KEY": "did:key:zQ3sh",
    "BSKY_HANDLE": "battlemaster.test",
    "BSKY_PASSWORD": "this-is-a-very-secure-password",
}


def _settings(tmp_path) -> settings.Settings:
    config = {
        "labels": [
            {
                "rkey": PVP_RKEY,
                "identifier": "pvp",
                "locales": [{"lang": "en", "name": "PvP", "description": "Fights in the replies"}],
            }
        ],
        "storage": {"db_path": str(tmp_path / "cursor.db")},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return settings.load_settings(str(path), env=ENV)


async def _interrupt_and_hang(*args, **kwargs):
    signal.raise_signal(signal.SIGINT)
    await asyncio.sleep(10)


def test_signal_during_login_exits_cleanly(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(app, "authorize", _interrupt_and_hang)

    assert asyncio.run(app._serve(_settings(tmp_path))) == 0


def test_signal_during_first_connect_exits_cleanly(tmp_path, monkeypatch) -> None:
    async def fake_authorize(client, handle, password):
        return AtpSession(did=AUTHORITY, handle=handle, access_jwt="access-1", refresh_jwt="refresh-1")

    class HangingFeed:
        def __init__(self, endpoint, collection) -> None:
            pass

        open = staticmethod(_interrupt_and_hang)

    monkeypatch.setattr(app, "authorize", fake_authorize)
    monkeypatch.setattr(app, "JetstreamFeed", HangingFeed)

    assert asyncio.run(app._serve(_settings(tmp_path))) == 0
