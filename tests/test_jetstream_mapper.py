from __future__ import annotations

import json

from battlemaster.adapters.jetstream_feed import build_subscribe_url
from battlemaster.adapters.jetstream_mapper import build_message, decode_frame

COLLECTION = "app.bsky.feed.like"


def _like_frame(**commit_overrides) -> dict:
    commit = {
        "rev": "3l3qo2vutsw2b",
        "operation": "create",
        "collection": COLLECTION,
        "rkey": "3l3qo2vuowo2b",
        "record": {
            "$type": COLLECTION,
            "createdAt": "2024-09-09T19:46:02.102Z",
            "subject": {
                "cid": "bafyreidc6sydkkbchcyg62v77wbhzvb2mvytlmsychqgwf2xojjtirmzj4",
                "uri": "at://did:plc:authority/app.bsky.feed.post/3jzfcijpj2z2a",
            },
        },
        "cid": "bafyreidwaivazkwu67xztlmuobx35hs2lnfh3kolmgfmucldvhd3sgzcqi",
    }
    commit.update(commit_overrides)
    return {"did": "did:plc:user1", "time_us": 1725911162329308, "kind": "commit", "commit": commit}


def test_like_create_becomes_trigger_event() -> None:
    message = build_message(_like_frame(), COLLECTION)

    assert message is not None
    assert message.time_us == 1725911162329308
    event = message.event
    assert event.actor == "did:plc:user1"
    assert event.revision == "3l3qo2vutsw2b"
    assert event.subject_uri == "at://did:plc:authority/app.bsky.feed.post/3jzfcijpj2z2a"
    assert event.time_us == 1725911162329308


def test_delete_keeps_position_without_event() -> None:
    message = build_message(_like_frame(operation="delete"), COLLECTION)

    assert message.time_us == 1725911162329308
    assert message.event is None


def test_identity_frames_keep_position_without_event() -> None:
    frame = {"did": "did:plc:user1", "time_us": 42, "kind": "identity", "identity": {}}
    message = build_message(frame, COLLECTION)

    assert message.time_us == 42
    assert message.event is None


def test_missing_subject_still_yields_event_for_validation() -> None:
    message = build_message(_like_frame(record={"$type": COLLECTION}), COLLECTION)

    assert message.event is not None
    assert message.event.subject_uri is None


def test_decode_frame_skips_garbage() -> None:
    assert decode_frame("{not json", COLLECTION) is None
    assert decode_frame("[1, 2]", COLLECTION) is None


def test_decode_frame_accepts_bytes() -> None:
    message = decode_frame(json.dumps(_like_frame()).encode("utf-8"), COLLECTION)
    assert message.event.actor == "did:plc:user1"


def test_subscribe_url_includes_collection_and_cursor() -> None:
    url = build_subscribe_url("wss://jetstream.atproto.tools/subscribe", COLLECTION, 123)
    assert url == "wss://jetstream.atproto.tools/subscribe?wantedCollections=app.bsky.feed.like&cursor=123"


def test_subscribe_url_without_cursor_keeps_existing_query() -> None:
    url = build_subscribe_url("wss://example.com/subscribe?compress=false", COLLECTION, None)
    assert url == "wss://example.com/subscribe?compress=false&wantedCollections=app.bsky.feed.like"
