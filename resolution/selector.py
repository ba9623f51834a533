"""Ordered resolution strategies for remote item references.

Strategies run cheapest and most authoritative first and stop at the first
complete record (title and audio location):

1. ``api-direct``  - item lookup by ``(feed_id, item_id)``.
2. ``feed-fetch``  - feed location from the known-feed table or a feed lookup,
   then the item is read out of the feed document.
3. ``fragment``    - only for URL-shaped item ids: the trailing path segment is
   matched against enclosure URLs in the feed document, then against audio
   locations already in the store. Lower confidence, tagged accordingly.

When nothing resolves, a clearly labeled placeholder is produced instead.
Every applicable strategy counts as one attempt on the record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from resolution.cache import ResolutionCache
from resolution.matching import looks_like_url, split_artist_title, trailing_segment
from resolution.types import (
    FAILURE_PRIORITY,
    STRATEGY_API_DIRECT,
    STRATEGY_FEED_FETCH,
    STRATEGY_FRAGMENT,
    STRATEGY_PLACEHOLDER,
    FailureClass,
    FeedInfo,
    ItemFields,
    ItemInfo,
    NotFound,
    RemoteItemRef,
    ResolutionOutcome,
    ResolutionState,
    ResolvedTrack,
    Throttled,
)

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
PLACEHOLDER_TITLE = "Unresolved Track {label}"
DEFAULT_PLACEHOLDER_DURATION = 180
_TRANSIENT_ERRORS = {"timeout", "connection_error"}
_TRANSIENT_STATUS = {408}

FragmentSource = Callable[[str], list[ResolvedTrack]]


def classify_failure(result: NotFound) -> FailureClass:
    if result.error in _TRANSIENT_ERRORS:
        return FailureClass.TRANSIENT
    if result.status_code is not None and (result.status_code >= 500 or result.status_code in _TRANSIENT_STATUS):
        return FailureClass.TRANSIENT
    if result.error == "malformed":
        return FailureClass.MALFORMED
    return FailureClass.PERMANENT


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime) -> str:
    return value.replace(microsecond=0).isoformat()


def placeholder_title(ref: RemoteItemRef, position: int | None = None) -> str:
    label = str(position) if position else f"({ref.item_id[:8]})"
    return PLACEHOLDER_TITLE.format(label=label)


@dataclass
class _Progress:
    ref: RemoteItemRef
    attempts: int = 0
    tried: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    failure_class: FailureClass | None = None
    reason: str = ""
    retry_after: float | None = None
    feed_location: str = ""
    feed_info: FeedInfo | None = None
    feed_miss: NotFound | None = None

    def fail(self, failure_class: FailureClass, reason: str) -> None:
        current = FAILURE_PRIORITY[self.failure_class] if self.failure_class else -1
        if FAILURE_PRIORITY[failure_class] >= current:
            self.failure_class = failure_class
        self.reason = reason

    def absorb(self, found: dict[str, Any]) -> dict[str, Any]:
        for key, value in found.items():
            if value:
                self.fields[key] = value
            else:
                self.fields.setdefault(key, value)
        return self.fields

    @property
    def complete(self) -> bool:
        return bool(str(self.fields.get("title") or "").strip() and str(self.fields.get("audio_location") or "").strip())


class ResolutionSelector:
    """Turns a ``RemoteItemRef`` into a resolved or placeholder ``ResolvedTrack``."""

    def __init__(
        self,
        client,
        fetcher,
        cache: ResolutionCache | None = None,
        *,
        known_feeds: Mapping[str, str] | None = None,
        fragment_source: FragmentSource | None = None,
        placeholder_duration_seconds: int = DEFAULT_PLACEHOLDER_DURATION,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        if placeholder_duration_seconds <= 0:
            raise ValueError("placeholder_duration_seconds must be > 0")
        self._client = client
        self._fetcher = fetcher
        self._cache = cache
        self._known_feeds = {str(k).strip(): str(v).strip() for k, v in (known_feeds or {}).items()}
        self._fragment_source = fragment_source
        self._placeholder_duration = int(placeholder_duration_seconds)
        self._now = now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def resolve(
        self,
        ref: RemoteItemRef,
        *,
        prior_attempts: int = 0,
        position: int | None = None,
    ) -> ResolutionOutcome:
        progress = _Progress(ref=ref)
        strategies = (
            (STRATEGY_API_DIRECT, self._api_direct),
            (STRATEGY_FEED_FETCH, self._feed_fetch),
            (STRATEGY_FRAGMENT, self._fragment),
        )
        for name, strategy in strategies:
            if name == STRATEGY_FRAGMENT and not looks_like_url(ref.item_id):
                continue
            progress.attempts += 1
            progress.tried.append(name)
            result = strategy(ref, progress)

            if isinstance(result, Throttled):
                progress.fail(FailureClass.THROTTLED, f"{name}: {result.reason}")
                progress.retry_after = result.retry_after
                logger.info("resolution_throttled ref=%s/%s strategy=%s", ref.feed_id, ref.item_id, name)
                break
            if isinstance(result, NotFound):
                progress.fail(classify_failure(result), f"{name}: {result.reason}")
                logger.debug(
                    "resolution_strategy ref=%s/%s strategy=%s result=not_found reason=%s",
                    ref.feed_id,
                    ref.item_id,
                    name,
                    result.reason,
                )
                continue

            progress.absorb(result)
            if progress.complete:
                track = self._build_resolved(ref, progress, name, prior_attempts)
                logger.info("resolution_strategy ref=%s/%s strategy=%s result=resolved", ref.feed_id, ref.item_id, name)
                return ResolutionOutcome(
                    ref=ref,
                    track=track,
                    resolved=True,
                    attempts=progress.attempts,
                    strategies_tried=list(progress.tried),
                )
            progress.fail(FailureClass.PERMANENT, f"{name}: incomplete item (missing title or audio)")

        track = self._build_placeholder(ref, progress, prior_attempts, position)
        return ResolutionOutcome(
            ref=ref,
            track=track,
            resolved=False,
            attempts=progress.attempts,
            failure_class=progress.failure_class or FailureClass.PERMANENT,
            reason=progress.reason or "no strategy applied",
            retry_after=progress.retry_after,
            strategies_tried=list(progress.tried),
        )

    def placeholder_for(
        self,
        ref: RemoteItemRef,
        reason: str,
        *,
        prior_attempts: int = 0,
        position: int | None = None,
    ) -> ResolvedTrack:
        """Labeled placeholder for ``ref`` without running any strategy."""
        progress = _Progress(ref=ref, reason=reason)
        return self._build_placeholder(ref, progress, prior_attempts, position)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------
    def _api_direct(self, ref: RemoteItemRef, progress: _Progress):
        result = self._client.lookup_item(ref.feed_id, ref.item_id)
        if not isinstance(result, ItemInfo):
            return result
        return {
            "title": result.title,
            "audio_location": result.audio_location,
            "duration_seconds": result.duration_seconds,
            "artwork_location": result.image or result.feed_image,
            "artist": result.author,
            "album": result.feed_title,
            "_feed_title": result.feed_title,
        }

    def _feed_location(self, ref: RemoteItemRef, progress: _Progress):
        if progress.feed_location:
            return progress.feed_location
        if progress.feed_miss is not None:
            return progress.feed_miss
        known = self._known_feeds.get(ref.feed_id)
        if known:
            progress.feed_location = known
            return known
        info = self._client.lookup_feed(ref.feed_id)
        if isinstance(info, NotFound):
            progress.feed_miss = info
            return info
        if not isinstance(info, FeedInfo):
            return info
        progress.feed_info = info
        if info.artwork and self._cache is not None:
            self._cache.set(f"artwork:{ref.feed_id}", info.artwork)
        if not info.location:
            progress.feed_miss = NotFound("feed has no network location", status_code=200, error="not_found")
            return progress.feed_miss
        progress.feed_location = info.location
        return info.location

    def _item_fields(self, ref: RemoteItemRef, progress: _Progress, item: ItemFields) -> dict[str, Any]:
        feed_title = item.feed_title or (progress.feed_info.title if progress.feed_info else "")
        feed_author = item.feed_author or (progress.feed_info.author if progress.feed_info else "")
        feed_art = item.feed_image or (progress.feed_info.artwork if progress.feed_info else "")
        if feed_art and self._cache is not None:
            self._cache.set(f"artwork:{ref.feed_id}", feed_art)
        return {
            "title": item.title,
            "audio_location": item.audio_location,
            "duration_seconds": item.duration_seconds,
            "artwork_location": item.image or feed_art,
            "artist": item.author or feed_author,
            "album": feed_title,
            "_feed_title": feed_title,
        }

    def _feed_fetch(self, ref: RemoteItemRef, progress: _Progress):
        location = self._feed_location(ref, progress)
        if not isinstance(location, str):
            return location
        item = self._fetcher.fetch_item(location, ref.item_id)
        if not isinstance(item, ItemFields):
            return item
        return self._item_fields(ref, progress, item)

    def _fragment(self, ref: RemoteItemRef, progress: _Progress):
        segment = trailing_segment(ref.item_id)
        if not segment:
            return NotFound("item id has no path segment to match", error="not_found")

        last_miss: NotFound | Throttled = NotFound(f"no audio location contains {segment}", error="not_found")
        location = self._feed_location(ref, progress)
        if isinstance(location, Throttled):
            return location
        if isinstance(location, str):
            item = self._fetcher.find_by_audio_fragment(location, segment)
            if isinstance(item, ItemFields):
                return self._item_fields(ref, progress, item)
            last_miss = item
        else:
            last_miss = location

        if self._fragment_source is not None:
            for candidate in self._fragment_source(segment):
                if candidate.key == ref.key:
                    continue
                if candidate.resolution_state is not ResolutionState.RESOLVED:
                    continue
                return {
                    "title": candidate.title,
                    "audio_location": candidate.audio_location,
                    "duration_seconds": candidate.duration_seconds,
                    "artwork_location": candidate.artwork_location,
                    "artist": candidate.artist,
                    "album": candidate.album,
                }
        return last_miss

    # ------------------------------------------------------------------
    # Record building
    # ------------------------------------------------------------------
    def _cached_artwork(self, ref: RemoteItemRef) -> str:
        if self._cache is None:
            return ""
        cached = self._cache.get(f"artwork:{ref.feed_id}")
        return cached if isinstance(cached, str) else ""

    def _build_resolved(
        self,
        ref: RemoteItemRef,
        progress: _Progress,
        strategy: str,
        prior_attempts: int,
    ) -> ResolvedTrack:
        data = progress.fields
        title = str(data.get("title") or "").strip()
        feed_title = str(data.get("_feed_title") or "").strip()
        artist = str(data.get("artist") or "").strip()
        if not artist:
            artist, _ = split_artist_title(title)
        artist = artist or feed_title or UNKNOWN_ARTIST
        album = str(data.get("album") or "").strip() or feed_title or UNKNOWN_ALBUM
        now = _isoformat(self._now())
        return ResolvedTrack(
            feed_id=ref.feed_id,
            item_id=ref.item_id,
            title=title,
            artist=artist,
            album=album,
            audio_location=str(data.get("audio_location") or "").strip(),
            duration_seconds=int(data.get("duration_seconds") or 0),
            artwork_location=str(data.get("artwork_location") or "").strip() or self._cached_artwork(ref),
            resolution_state=ResolutionState.RESOLVED,
            resolution_strategy=strategy,
            last_attempted_at=now,
            last_resolved_at=now,
            attempt_count=prior_attempts + progress.attempts,
            last_error="",
        )

    def _build_placeholder(
        self,
        ref: RemoteItemRef,
        progress: _Progress,
        prior_attempts: int,
        position: int | None,
    ) -> ResolvedTrack:
        data = progress.fields
        return ResolvedTrack(
            feed_id=ref.feed_id,
            item_id=ref.item_id,
            title=placeholder_title(ref, position),
            artist=str(data.get("artist") or "").strip() or UNKNOWN_ARTIST,
            album=str(data.get("album") or "").strip() or UNKNOWN_ALBUM,
            audio_location="",
            duration_seconds=self._placeholder_duration,
            artwork_location=str(data.get("artwork_location") or "").strip() or self._cached_artwork(ref),
            resolution_state=ResolutionState.PLACEHOLDER,
            resolution_strategy=STRATEGY_PLACEHOLDER,
            last_attempted_at=_isoformat(self._now()),
            last_resolved_at="",
            attempt_count=prior_attempts + progress.attempts,
            last_error=progress.reason or "no strategy applied",
        )
