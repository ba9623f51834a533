"""Database helpers for the remote item reconciler."""

from db.resolved_tracks import ResolvedTrackStore

__all__ = ["ResolvedTrackStore"]
