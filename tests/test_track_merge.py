from __future__ import annotations

import pytest

from resolution.merge import merge_tracks
from resolution.types import ResolutionState, ResolvedTrack


def _placeholder(**overrides) -> ResolvedTrack:
    base = dict(
        feed_id="feed-1",
        item_id="item-1",
        title="Unresolved Track 1",
        artist="Unknown Artist",
        album="Unknown Album",
        duration_seconds=180,
        resolution_state=ResolutionState.PLACEHOLDER,
        resolution_strategy="placeholder",
        last_attempted_at="2026-03-01T10:00:00+00:00",
        attempt_count=2,
        last_error="feed-fetch: missing",
    )
    base.update(overrides)
    return ResolvedTrack(**base)


def _resolved(**overrides) -> ResolvedTrack:
    base = dict(
        feed_id="feed-1",
        item_id="item-1",
        title="Midnight Run",
        artist="Neon Coast",
        album="Night Drive",
        audio_location="https://cdn.example.com/audio/midnight-run.mp3",
        duration_seconds=245,
        artwork_location="https://cdn.example.com/art.jpg",
        resolution_state=ResolutionState.RESOLVED,
        resolution_strategy="api-direct",
        last_attempted_at="2026-03-01T11:00:00+00:00",
        last_resolved_at="2026-03-01T11:00:00+00:00",
        attempt_count=3,
    )
    base.update(overrides)
    return ResolvedTrack(**base)


def test_resolved_data_replaces_placeholder_content() -> None:
    merged = merge_tracks(_placeholder(artwork_location="https://cdn.example.com/feed.jpg"), _resolved(artwork_location=""))

    assert merged.resolution_state is ResolutionState.RESOLVED
    assert merged.title == "Midnight Run"
    assert merged.duration_seconds == 245
    assert merged.artwork_location == ""
    assert merged.last_error == ""
    assert merged.attempt_count == 3


def test_placeholder_never_downgrades_resolved_record() -> None:
    existing = _resolved()
    incoming = _placeholder(attempt_count=5, last_attempted_at="2026-03-02T09:00:00+00:00", last_error="api-direct: timeout")

    merged = merge_tracks(existing, incoming)

    assert merged.resolution_state is ResolutionState.RESOLVED
    assert merged.title == existing.title
    assert merged.audio_location == existing.audio_location
    assert merged.resolution_strategy == "api-direct"
    assert merged.attempt_count == 5
    assert merged.last_attempted_at == "2026-03-02T09:00:00+00:00"
    assert merged.last_resolved_at == existing.last_resolved_at
    assert merged.last_error == "api-direct: timeout"


def test_empty_values_never_overwrite_known_fields() -> None:
    existing = _resolved()
    incoming = _resolved(artwork_location="", duration_seconds=0, album="", attempt_count=4)

    merged = merge_tracks(existing, incoming)

    assert merged.artwork_location == existing.artwork_location
    assert merged.duration_seconds == 245
    assert merged.album == "Night Drive"
    assert merged.attempt_count == 4


def test_higher_attempt_count_is_authoritative_between_equal_states() -> None:
    existing = _resolved(title="Midnight Run (Live)", attempt_count=7)
    incoming = _resolved(title="Midnight Run", attempt_count=3)

    merged = merge_tracks(existing, incoming)

    assert merged.title == "Midnight Run (Live)"
    assert merged.attempt_count == 7


def test_unresolved_seed_leaves_placeholder_untouched() -> None:
    existing = _placeholder()
    seed = ResolvedTrack(feed_id="feed-1", item_id="item-1")

    merged = merge_tracks(existing, seed)

    assert merged == existing


def test_merge_rejects_different_keys() -> None:
    with pytest.raises(ValueError):
        merge_tracks(_resolved(), _resolved(item_id="item-2"))
