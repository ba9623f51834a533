"""Resumable progress markers for long resolution runs."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def _key_string(key: tuple[str, str]) -> str:
    return json.dumps([key[0], key[1]], ensure_ascii=False)


class RunCheckpoint:
    """Set of settled composite keys persisted to a JSON file.

    ``save`` writes atomically, so an interrupted run leaves either the previous
    or the new checkpoint on disk.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._settled: set[str] = set()
        self._dirty = 0
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("checkpoint_load_failed path=%s", self.path)
            return
        keys = payload.get("settled") if isinstance(payload, dict) else None
        if isinstance(keys, list):
            self._settled = {_key_string((str(k[0]), str(k[1]))) for k in keys if isinstance(k, list) and len(k) == 2}
        logger.info("checkpoint_loaded path=%s settled=%s", self.path, len(self._settled))

    def is_settled(self, key: tuple[str, str]) -> bool:
        with self._lock:
            return _key_string(key) in self._settled

    def mark_settled(self, key: tuple[str, str]) -> int:
        """Record ``key``; returns the number of keys marked since the last save."""
        with self._lock:
            self._settled.add(_key_string(key))
            self._dirty += 1
            return self._dirty

    def save(self) -> None:
        with self._lock:
            self._dirty = 0
            if self.path is None:
                return
            payload = {
                "version": 1,
                "updated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
                "settled": sorted(json.loads(k) for k in self._settled),
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(f"{self.path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)

    def clear(self) -> None:
        with self._lock:
            self._settled = set()
            self._dirty = 0
            if self.path is not None and self.path.exists():
                self.path.unlink()

    def __len__(self) -> int:
        with self._lock:
            return len(self._settled)
