"""Field-level merge for canonical track records."""

from __future__ import annotations

import logging

from resolution.types import ResolutionState, ResolvedTrack

_LOG = logging.getLogger(__name__)

CONTENT_FIELDS = (
    "title",
    "artist",
    "album",
    "audio_location",
    "duration_seconds",
    "artwork_location",
)


def _has_value(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, int):
        return value > 0
    return True


def _latest(a: str, b: str) -> str:
    # ISO-8601 UTC strings compare lexically
    return max(a or "", b or "")


def merge_tracks(existing: ResolvedTrack, incoming: ResolvedTrack) -> ResolvedTrack:
    """Merge ``incoming`` into ``existing`` without losing known data.

    - A higher-ranked state wins the record; its non-empty fields overwrite.
    - A lower-ranked state (placeholder onto resolved) never touches content
      fields or the state; only bookkeeping advances.
    - Equal states: the record with the higher ``attempt_count`` is
      authoritative, the other may only fill empty fields.
    - Content of a placeholder is discarded once a better state arrives.
    - Empty values never overwrite non-empty ones.
    - ``attempt_count`` never decreases.
    """
    if existing.key != incoming.key:
        raise ValueError(f"cannot merge {incoming.key} into {existing.key}")

    ex_rank = existing.resolution_state.rank
    in_rank = incoming.resolution_state.rank
    incoming_newer = incoming.attempt_count >= existing.attempt_count

    if in_rank > ex_rank:
        # placeholder content is synthetic and must not leak into a better record
        winner = incoming
        loser = existing if existing.resolution_state is not ResolutionState.PLACEHOLDER else None
    elif in_rank < ex_rank:
        winner, loser = existing, None
    elif incoming_newer:
        winner, loser = incoming, existing
    else:
        winner, loser = existing, incoming

    merged = {}
    for name in CONTENT_FIELDS:
        primary = getattr(winner, name)
        fallback = getattr(loser, name) if loser is not None else None
        merged[name] = primary if _has_value(primary) or not _has_value(fallback) else fallback

    if winner is incoming:
        last_error = incoming.last_error
    elif in_rank < ex_rank and incoming.attempt_count > existing.attempt_count and incoming.last_error:
        last_error = incoming.last_error
    else:
        last_error = existing.last_error

    state = winner.resolution_state
    if state is not existing.resolution_state:
        _LOG.info(
            "track_state_advanced key=%s/%s from=%s to=%s",
            existing.feed_id,
            existing.item_id,
            existing.resolution_state.value,
            state.value,
        )

    return ResolvedTrack(
        feed_id=existing.feed_id,
        item_id=existing.item_id,
        resolution_state=state,
        resolution_strategy=winner.resolution_strategy or (loser.resolution_strategy if loser else ""),
        last_attempted_at=_latest(existing.last_attempted_at, incoming.last_attempted_at),
        last_resolved_at=_latest(existing.last_resolved_at, incoming.last_resolved_at),
        attempt_count=max(existing.attempt_count, incoming.attempt_count),
        last_error=last_error,
        **merged,
    )
