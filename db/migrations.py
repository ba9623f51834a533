"""SQLite migrations for the resolved track store."""

from __future__ import annotations

import sqlite3


def ensure_resolved_track_tables(conn: sqlite3.Connection) -> None:
    """Ensure resolved track tables and indexes exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS resolved_tracks (
            feed_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            artist TEXT NOT NULL DEFAULT '',
            album TEXT NOT NULL DEFAULT '',
            audio_location TEXT NOT NULL DEFAULT '',
            duration_seconds INTEGER NOT NULL DEFAULT 0,
            artwork_location TEXT NOT NULL DEFAULT '',
            resolution_state TEXT NOT NULL DEFAULT 'unresolved',
            resolution_strategy TEXT NOT NULL DEFAULT '',
            last_attempted_at TEXT NOT NULL DEFAULT '',
            last_resolved_at TEXT NOT NULL DEFAULT '',
            attempt_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT NOT NULL DEFAULT '',
            PRIMARY KEY (feed_id, item_id)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_resolved_tracks_state "
        "ON resolved_tracks (resolution_state)"
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_resolved_tracks_audio_location "
        "ON resolved_tracks (audio_location)"
    )
    conn.commit()
