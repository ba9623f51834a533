"""Thread-safe TTL cache for lookup results, optionally persisted to JSON."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ResolutionCache:
    """Short-TTL memo for feed lookups, parsed feed documents and artwork.

    Last write wins. Expired entries are dropped on read and by
    ``purge_expired``. When ``path`` is set, entries are persisted as JSON so a
    later run can reuse them until they expire.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.time,
        path: str | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, Any]] = {}
        self._loaded = False

    def _load_locked(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self._path is None or not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("resolution_cache_load_failed path=%s", self._path)
            return
        entries = payload.get("entries") if isinstance(payload, dict) else None
        if isinstance(entries, dict):
            self._data = {k: v for k, v in entries.items() if isinstance(v, dict)}

    def _persist_locked(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        payload = {"version": 1, "entries": self._data}
        tmp_path.write_text(json.dumps(payload, ensure_ascii=True, separators=(",", ":")), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            self._load_locked()
            row = self._data.get(key)
            if row is None:
                return None
            if float(row.get("expires_at") or 0.0) <= now:
                self._data.pop(key, None)
                return None
            return row.get("value")

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else max(0.001, float(ttl_seconds))
        now = self._clock()
        with self._lock:
            self._load_locked()
            self._data[key] = {"expires_at": now + ttl, "value": value}
            self._persist_locked()

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            self._load_locked()
            expired = [k for k, row in self._data.items() if float(row.get("expires_at") or 0.0) <= now]
            for key in expired:
                self._data.pop(key, None)
            if expired:
                self._persist_locked()
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._loaded = True
            self._data = {}
            self._persist_locked()

    def __len__(self) -> int:
        with self._lock:
            self._load_locked()
            return len(self._data)
