from __future__ import annotations

import threading
from datetime import timedelta

from memory import AudioStore, DedupCache, SessionStore
from memory.time_utils import utc_now
from nidaan_core.models import Role, SessionTurn


def test_session_keeps_only_most_recent_turns():
    store = SessionStore(max_turns=3)
    for index in range(5):
        store.append("A", SessionTurn(role=Role.USER, content=f"turn {index}"))
    assert [turn.content for turn in store.turns("A")] == ["turn 2", "turn 3", "turn 4"]


def test_session_default_cap_is_twenty():
    store = SessionStore()
    for index in range(25):
        store.append("A", SessionTurn(role=Role.USER, content=str(index)))
    turns = store.turns("A")
    assert len(turns) == 20
    assert turns[0].content == "5"


def test_session_expired_turns_are_filtered_on_read():
    store = SessionStore(expiry=timedelta(hours=24))
    stale = utc_now() - timedelta(hours=25)
    store.append("A", SessionTurn(role=Role.USER, content="old", timestamp=stale, language="ta-IN"))
    store.append("A", SessionTurn(role=Role.USER, content="new"))
    assert [turn.content for turn in store.turns("A")] == ["new"]
    assert store.last_language("A") is None


def test_session_fully_expired_sender_reads_empty():
    store = SessionStore(expiry=timedelta(minutes=1))
    store.append("A", SessionTurn(role=Role.USER, content="old", timestamp=utc_now() - timedelta(minutes=5)))
    assert store.turns("A") == []
    assert store.turns("A") == []


def test_session_last_language_is_most_recent():
    store = SessionStore()
    store.append("A", SessionTurn(role=Role.USER, content="a", language="hi-IN"))
    store.append("A", SessionTurn(role=Role.ASSISTANT, content="b", language="ta-IN"))
    store.append("A", SessionTurn(role=Role.USER, content="c"))
    assert store.last_language("A") == "ta-IN"
    assert store.last_language("B") is None


def test_sessions_are_isolated_per_sender():
    store = SessionStore()
    store.append("A", SessionTurn(role=Role.USER, content="a"))
    store.append("B", SessionTurn(role=Role.USER, content="b"))
    store.clear("A")
    assert store.turns("A") == []
    assert [turn.content for turn in store.turns("B")] == ["b"]


def test_concurrent_appends_do_not_lose_turns():
    store = SessionStore(max_turns=1000)

    def worker(prefix: str) -> None:
        for index in range(100):
            store.append("A", SessionTurn(role=Role.USER, content=f"{prefix}-{index}"))

    threads = [threading.Thread(target=worker, args=(str(n),)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(store.turns("A")) == 400


def test_dedup_rejects_seen_ids():
    cache = DedupCache()
    assert cache.mark_if_new("wamid.1") is True
    assert cache.mark_if_new("wamid.1") is False
    assert "wamid.1" in cache


def test_dedup_clears_wholesale_at_threshold():
    cache = DedupCache(max_size=3)
    for message_id in ("a", "b", "c"):
        assert cache.mark_if_new(message_id)
    assert len(cache) == 3
    assert cache.mark_if_new("d") is True
    assert len(cache) == 1
    assert cache.mark_if_new("a") is True


def test_dedup_is_atomic_under_concurrency():
    cache = DedupCache()
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        outcome = cache.mark_if_new("same-id")
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results.count(True) == 1


def test_audio_store_round_trip_and_expiry():
    store = AudioStore(ttl=timedelta(minutes=5))
    audio_id = store.put(b"OggS-data", "audio/ogg")
    blob = store.get(audio_id)
    assert blob is not None
    assert blob.data == b"OggS-data"
    assert blob.mime_type == "audio/ogg"
    assert store.get("missing") is None


def test_audio_store_evicts_expired_blobs(monkeypatch):
    store = AudioStore(ttl=timedelta(minutes=5))
    audio_id = store.put(b"ID3-data", "audio/mpeg")
    later = utc_now() + timedelta(minutes=6)
    monkeypatch.setattr("memory.audio_store.utc_now", lambda: later)
    assert store.get(audio_id) is None
    assert len(store) == 0
