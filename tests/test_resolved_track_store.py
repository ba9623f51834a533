from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from db.resolved_tracks import ResolvedTrackStore
from resolution.types import RemoteItemRef, ResolutionState, ResolvedTrack


def _resolved(item_id: str, **overrides) -> ResolvedTrack:
    base = dict(
        feed_id="feed-1",
        item_id=item_id,
        title=f"Song {item_id}",
        artist="Neon Coast",
        album="Night Drive",
        audio_location=f"https://cdn.example.com/audio/{item_id}.mp3",
        duration_seconds=200,
        resolution_state=ResolutionState.RESOLVED,
        resolution_strategy="api-direct",
        last_attempted_at="2026-03-01T11:00:00+00:00",
        last_resolved_at="2026-03-01T11:00:00+00:00",
        attempt_count=1,
    )
    base.update(overrides)
    return ResolvedTrack(**base)


def test_upsert_keeps_one_record_per_key(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    ref = RemoteItemRef("feed-1", "item-1")

    store.upsert(ResolvedTrack.unresolved(ref))
    store.upsert(ResolvedTrack.unresolved(ref))
    stored = store.upsert(_resolved("item-1"))

    assert store.count() == 1
    assert stored.resolution_state is ResolutionState.RESOLVED
    assert store.get("feed-1", "item-1") == stored


def test_invalid_records_are_rejected(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))

    with pytest.raises(ValueError):
        store.upsert(_resolved("item-1", audio_location=""))
    with pytest.raises(ValueError):
        store.get("", "item-1")
    assert store.count() == 0


def test_resolved_record_is_never_downgraded(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    store.upsert(_resolved("item-1"))

    stored = store.upsert(
        ResolvedTrack(
            feed_id="feed-1",
            item_id="item-1",
            title="Unresolved Track 1",
            artist="Unknown Artist",
            duration_seconds=180,
            resolution_state=ResolutionState.PLACEHOLDER,
            resolution_strategy="placeholder",
            attempt_count=4,
            last_error="api-direct: timeout",
        )
    )

    assert stored.resolution_state is ResolutionState.RESOLVED
    assert stored.title == "Song item-1"
    assert stored.attempt_count == 4


def test_concurrent_upserts_keep_best_record(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    store.ensure_schema()
    tracks = [_resolved("item-1", attempt_count=n, title=f"Take {n}") for n in range(1, 9)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(store.upsert, tracks))

    stored = store.get("feed-1", "item-1")
    assert store.count() == 1
    assert stored.attempt_count == 8
    assert stored.title == "Take 8"


def test_list_pending_and_counts_by_state(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    store.upsert(ResolvedTrack.unresolved(RemoteItemRef("feed-2", "b")))
    store.upsert(ResolvedTrack.unresolved(RemoteItemRef("feed-1", "a")))
    store.upsert(_resolved("c"))

    pending = store.list_pending("unresolved")

    assert [t.key for t in pending] == [("feed-1", "a"), ("feed-2", "b")]
    assert store.count(ResolutionState.RESOLVED) == 1
    assert store.count(ResolutionState.PLACEHOLDER) == 0


def test_search_audio_location_matches_resolved_only(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    store.upsert(_resolved("midnight-run"))
    store.upsert(_resolved("100%_mix", audio_location="https://cdn.example.com/audio/100%_mix.mp3"))
    store.upsert(ResolvedTrack.unresolved(RemoteItemRef("feed-1", "other")))

    assert [t.item_id for t in store.search_audio_location("MIDNIGHT-RUN.mp3")] == ["midnight-run"]
    assert [t.item_id for t in store.search_audio_location("100%_mix")] == ["100%_mix"]
    assert store.search_audio_location("0%_") == [store.get("feed-1", "100%_mix")]
    assert store.search_audio_location("") == []


def test_apply_fixup_overrides_fields(tmp_path) -> None:
    store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    store.upsert(_resolved("item-1", attempt_count=3))

    fixed = store.apply_fixup("feed-1", "item-1", title="Midnight Run", duration_seconds="245")

    assert fixed.title == "Midnight Run"
    assert fixed.duration_seconds == 245
    assert fixed.attempt_count == 3
    with pytest.raises(ValueError):
        store.apply_fixup("feed-1", "item-1", attempt_count=0)
    with pytest.raises(ValueError):
        store.apply_fixup("feed-1", "missing", title="x")


def test_snapshot_export_and_import(tmp_path) -> None:
    source = ResolvedTrackStore(str(tmp_path / "source.sqlite"))
    source.upsert(_resolved("item-1"))
    source.upsert(ResolvedTrack.unresolved(RemoteItemRef("feed-1", "item-2")))
    snapshot = tmp_path / "exports" / "tracks.json"

    assert source.export_snapshot(snapshot) == 2
    payload = json.loads(snapshot.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert [row["item_id"] for row in payload["tracks"]] == ["item-1", "item-2"]

    target = ResolvedTrackStore(str(tmp_path / "target.sqlite"))
    assert target.load_snapshot(snapshot) == 2
    assert target.list_all() == source.list_all()
