"""Structured types for remote item resolution."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any


class ResolutionState(str, Enum):
    UNRESOLVED = "unresolved"
    FAILED = "failed"
    PLACEHOLDER = "placeholder"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]

    @property
    def is_settled(self) -> bool:
        return self in (ResolutionState.PLACEHOLDER, ResolutionState.RESOLVED)


_STATE_RANK = {
    ResolutionState.UNRESOLVED: 0,
    ResolutionState.FAILED: 1,
    ResolutionState.PLACEHOLDER: 2,
    ResolutionState.RESOLVED: 3,
}


class FailureClass(str, Enum):
    PERMANENT = "permanent"
    MALFORMED = "malformed"
    TRANSIENT = "transient"
    THROTTLED = "throttled"

    @property
    def retryable(self) -> bool:
        return self in (FailureClass.TRANSIENT, FailureClass.THROTTLED)


# Higher wins when several strategies fail for one item.
FAILURE_PRIORITY = {
    FailureClass.PERMANENT: 0,
    FailureClass.MALFORMED: 1,
    FailureClass.TRANSIENT: 2,
    FailureClass.THROTTLED: 3,
}

STRATEGY_API_DIRECT = "api-direct"
STRATEGY_FEED_FETCH = "feed-fetch"
STRATEGY_FRAGMENT = "fragment"
STRATEGY_PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class RemoteItemRef:
    """Identifier pair pointing at a track in a feed we do not own."""

    feed_id: str
    item_id: str

    def __post_init__(self) -> None:
        for name in ("feed_id", "item_id"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise TypeError(f"{name} must be a string")
            cleaned = value.strip()
            if not cleaned:
                raise ValueError(f"{name} is required")
            object.__setattr__(self, name, cleaned)

    @property
    def key(self) -> tuple[str, str]:
        return (self.feed_id, self.item_id)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RemoteItemRef":
        """Build a ref from either ``feedGuid``/``itemGuid`` or ``feed_id``/``item_id`` keys."""
        feed_id = payload.get("feed_id") or payload.get("feedGuid") or payload.get("feedId") or ""
        item_id = payload.get("item_id") or payload.get("itemGuid") or payload.get("itemId") or ""
        return cls(feed_id=str(feed_id), item_id=str(item_id))


@dataclass
class ResolvedTrack:
    """Canonical track record keyed by ``(feed_id, item_id)``."""

    feed_id: str
    item_id: str
    title: str = ""
    artist: str = ""
    album: str = ""
    audio_location: str = ""
    duration_seconds: int = 0
    artwork_location: str = ""
    resolution_state: ResolutionState = ResolutionState.UNRESOLVED
    resolution_strategy: str = ""
    last_attempted_at: str = ""
    last_resolved_at: str = ""
    attempt_count: int = 0
    last_error: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.feed_id, self.item_id)

    @classmethod
    def unresolved(cls, ref: RemoteItemRef) -> "ResolvedTrack":
        return cls(feed_id=ref.feed_id, item_id=ref.item_id)

    def validate(self) -> None:
        if not str(self.feed_id or "").strip() or not str(self.item_id or "").strip():
            raise ValueError("feed_id and item_id are required")
        if not isinstance(self.resolution_state, ResolutionState):
            raise TypeError("resolution_state must be a ResolutionState")
        if not isinstance(self.duration_seconds, int) or self.duration_seconds < 0:
            raise ValueError("duration_seconds must be an integer >= 0")
        if not isinstance(self.attempt_count, int) or self.attempt_count < 0:
            raise ValueError("attempt_count must be an integer >= 0")
        if self.resolution_state is ResolutionState.RESOLVED:
            if not self.title.strip():
                raise ValueError(f"resolved track {self.key} must have a title")
            if not self.audio_location.strip():
                raise ValueError(f"resolved track {self.key} must have an audio location")

    def with_changes(self, **changes: Any) -> "ResolvedTrack":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["resolution_state"] = self.resolution_state.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ResolvedTrack":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in payload.items() if k in known}
        data["resolution_state"] = ResolutionState(data.get("resolution_state") or "unresolved")
        data["duration_seconds"] = int(data.get("duration_seconds") or 0)
        data["attempt_count"] = int(data.get("attempt_count") or 0)
        for name in known - {"resolution_state", "duration_seconds", "attempt_count"}:
            value = data.get(name)
            data[name] = "" if value is None else str(value)
        return cls(**data)


@dataclass(frozen=True)
class FeedInfo:
    feed_id: str
    title: str = ""
    location: str = ""
    artwork: str = ""
    author: str = ""
    index_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FeedInfo":
        index_id = payload.get("index_id")
        return cls(
            feed_id=str(payload.get("feed_id") or ""),
            title=str(payload.get("title") or ""),
            location=str(payload.get("location") or ""),
            artwork=str(payload.get("artwork") or ""),
            author=str(payload.get("author") or ""),
            index_id=int(index_id) if index_id is not None else None,
        )


@dataclass(frozen=True)
class ItemInfo:
    title: str = ""
    audio_location: str = ""
    duration_seconds: int = 0
    image: str = ""
    author: str = ""
    feed_title: str = ""
    feed_image: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.title.strip() and self.audio_location.strip())


@dataclass(frozen=True)
class ItemFields:
    """Fields extracted from one entry of a fetched feed document."""

    title: str = ""
    audio_location: str = ""
    duration_seconds: int = 0
    image: str = ""
    author: str = ""
    guid: str = ""
    match: str = "exact"
    feed_title: str = ""
    feed_author: str = ""
    feed_image: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.title.strip() and self.audio_location.strip())


@dataclass(frozen=True)
class NotFound:
    reason: str
    status_code: int | None = None
    error: str = ""


@dataclass(frozen=True)
class Throttled:
    retry_after: float | None = None
    reason: str = "throttled"


@dataclass
class ResolutionOutcome:
    """What one pass of the strategy selector produced for one ref."""

    ref: RemoteItemRef
    track: ResolvedTrack
    resolved: bool
    attempts: int
    failure_class: FailureClass | None = None
    reason: str = ""
    retry_after: float | None = None
    strategies_tried: list[str] = field(default_factory=list)

    @property
    def throttled(self) -> bool:
        return self.failure_class is FailureClass.THROTTLED
