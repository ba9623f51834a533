import sys
from pathlib import Path

import pytest

# Make the top-level packages importable however pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)


@pytest.fixture
def store(tmp_path):
    """Empty SQLite-backed track store in a temp directory."""
    from db.resolved_tracks import ResolvedTrackStore

    track_store = ResolvedTrackStore(str(tmp_path / "tracks.sqlite"))
    track_store.ensure_schema()
    return track_store
