from __future__ import annotations

from battlemaster.core.dedup import DedupCache, identifier_for
from fakes import FakeClock, make_event


def test_identifier_ignores_receipt_time() -> None:
    first = make_event(actor="did:plc:abc", revision="rev1", time_us=1)
    replay = make_event(actor="did:plc:abc", revision="rev1", time_us=2)

    assert identifier_for(first) == identifier_for(replay) == "did:plc:abc:rev1"


def test_identifier_differs_by_revision() -> None:
    assert identifier_for(make_event(revision="a")) != identifier_for(make_event(revision="b"))


def test_entry_present_until_retention_elapses() -> None:
    clock = FakeClock()
    cache = DedupCache(retention_seconds=3600, clock=clock)
    cache.record("x")

    clock.advance(3599.999)
    assert cache.seen("x")

    clock.advance(0.001)
    assert not cache.seen("x")
    assert len(cache) == 0


def test_record_keeps_first_insertion_time() -> None:
    clock = FakeClock()
    cache = DedupCache(retention_seconds=10, clock=clock)
    cache.record("x")
    clock.advance(5)
    cache.record("x")
    clock.advance(5)

    assert not cache.seen("x")


def test_sweep_removes_only_expired_entries() -> None:
    clock = FakeClock()
    cache = DedupCache(retention_seconds=60, clock=clock)
    cache.record("old")
    clock.advance(30)
    cache.record("new")
    clock.advance(30)

    removed = cache.sweep()

    assert removed == 1
    assert len(cache) == 1
    assert cache.seen("new")
