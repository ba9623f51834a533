"""Persistence for canonical resolved track records."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from db.migrations import ensure_resolved_track_tables
from resolution.merge import CONTENT_FIELDS, merge_tracks
from resolution.types import ResolutionState, ResolvedTrack

logger = logging.getLogger(__name__)

_DEFAULT_DB_ENV_KEY = "RECONCILER_DB_PATH"
_COLUMNS = (
    "feed_id",
    "item_id",
    "title",
    "artist",
    "album",
    "audio_location",
    "duration_seconds",
    "artwork_location",
    "resolution_state",
    "resolution_strategy",
    "last_attempted_at",
    "last_resolved_at",
    "attempt_count",
    "last_error",
)
_FIXUP_FIELDS = set(CONTENT_FIELDS) | {"resolution_state", "resolution_strategy"}
SNAPSHOT_VERSION = 1


def resolve_db_path() -> str:
    return os.environ.get(_DEFAULT_DB_ENV_KEY, os.path.join(os.getcwd(), "reconciler.sqlite3"))


def _row_to_track(row: sqlite3.Row) -> ResolvedTrack:
    return ResolvedTrack.from_dict(dict(row))


def _track_to_row(track: ResolvedTrack) -> tuple[Any, ...]:
    payload = track.to_dict()
    return tuple(payload[name] for name in _COLUMNS)


class ResolvedTrackStore:
    """Canonical collection of ``ResolvedTrack`` records keyed by ``(feed_id, item_id)``.

    ``upsert`` is the only writer. Writes run read-merge-write inside an
    immediate transaction so concurrent workers never lose each other's data.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path or resolve_db_path()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        ensure_resolved_track_tables(conn)
        return conn

    def ensure_schema(self) -> None:
        conn = self._connect()
        conn.close()

    def upsert(self, track: ResolvedTrack) -> ResolvedTrack:
        """Insert ``track`` or merge it into the existing record; returns the stored record."""
        track.validate()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                "SELECT * FROM resolved_tracks WHERE feed_id=? AND item_id=?",
                (track.feed_id, track.item_id),
            )
            row = cur.fetchone()
            stored = track if row is None else merge_tracks(_row_to_track(row), track)
            stored.validate()
            placeholders = ", ".join("?" for _ in _COLUMNS)
            cur.execute(
                f"INSERT OR REPLACE INTO resolved_tracks ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                _track_to_row(stored),
            )
            conn.commit()
            return stored
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, feed_id: str, item_id: str) -> ResolvedTrack | None:
        fid = (feed_id or "").strip()
        iid = (item_id or "").strip()
        if not fid or not iid:
            raise ValueError("feed_id and item_id are required")
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM resolved_tracks WHERE feed_id=? AND item_id=?",
                (fid, iid),
            ).fetchone()
            return _row_to_track(row) if row else None
        finally:
            conn.close()

    def list_pending(self, state: ResolutionState | str) -> list[ResolvedTrack]:
        """Return records in ``state`` in key order, used to drive re-resolution passes."""
        value = ResolutionState(state).value
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM resolved_tracks
                WHERE resolution_state=?
                ORDER BY feed_id ASC, item_id ASC
                """,
                (value,),
            ).fetchall()
            return [_row_to_track(row) for row in rows]
        finally:
            conn.close()

    def list_all(self) -> list[ResolvedTrack]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM resolved_tracks ORDER BY feed_id ASC, item_id ASC").fetchall()
            return [_row_to_track(row) for row in rows]
        finally:
            conn.close()

    def count(self, state: ResolutionState | str | None = None) -> int:
        conn = self._connect()
        try:
            if state is None:
                row = conn.execute("SELECT COUNT(*) FROM resolved_tracks").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM resolved_tracks WHERE resolution_state=?",
                    (ResolutionState(state).value,),
                ).fetchone()
            return int(row[0])
        finally:
            conn.close()

    def search_audio_location(self, fragment: str, *, limit: int = 5) -> list[ResolvedTrack]:
        """Resolved records whose audio location contains ``fragment`` (case-insensitive)."""
        text = (fragment or "").strip()
        if not text:
            return []
        escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM resolved_tracks
                WHERE resolution_state=? AND audio_location LIKE ? ESCAPE '\\'
                ORDER BY feed_id ASC, item_id ASC
                LIMIT ?
                """,
                (ResolutionState.RESOLVED.value, f"%{escaped}%", int(limit)),
            ).fetchall()
            return [_row_to_track(row) for row in rows]
        finally:
            conn.close()

    def apply_fixup(self, feed_id: str, item_id: str, **changes: Any) -> ResolvedTrack:
        """Operator correction routed through the normal merge.

        The fixup carries the record's current ``attempt_count`` so its
        non-empty values win over existing ones. Empty values are ignored,
        like any other merge.
        """
        unknown = set(changes) - _FIXUP_FIELDS
        if unknown:
            raise ValueError(f"unsupported fixup fields: {', '.join(sorted(unknown))}")
        existing = self.get(feed_id, item_id)
        if existing is None:
            raise ValueError(f"no record for {feed_id}/{item_id}")
        if "resolution_state" in changes:
            changes["resolution_state"] = ResolutionState(changes["resolution_state"])
        if "duration_seconds" in changes:
            changes["duration_seconds"] = int(changes["duration_seconds"])
        logger.info("track_fixup key=%s/%s fields=%s", feed_id, item_id, ",".join(sorted(changes)))
        return self.upsert(existing.with_changes(**changes))

    def export_snapshot(self, path: str | os.PathLike[str]) -> int:
        """Write every record to ``path`` as one JSON document; returns the record count."""
        tracks = self.list_all()
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": SNAPSHOT_VERSION,
            "exported_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            "tracks": [track.to_dict() for track in tracks],
        }
        tmp_path = target.with_suffix(f"{target.suffix}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp_path.replace(target)
        return len(tracks)

    def load_snapshot(self, path: str | os.PathLike[str]) -> int:
        """Upsert every record of a snapshot file; returns the record count."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            rows = payload.get("tracks")
        else:
            rows = payload
        if not isinstance(rows, list):
            raise ValueError("snapshot must contain a list of tracks")
        return self.upsert_many(ResolvedTrack.from_dict(row) for row in rows if isinstance(row, dict))

    def upsert_many(self, tracks: Iterable[ResolvedTrack]) -> int:
        count = 0
        for track in tracks:
            self.upsert(track)
            count += 1
        return count
