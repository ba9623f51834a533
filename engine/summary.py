"""Counters and failure reasons collected over one scheduler run."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RunSummary:
    """Per-run counts by terminal state plus reasons for every non-resolved item."""

    total: int = 0
    resolved: int = 0
    placeholder: int = 0
    failed: int = 0
    skipped: int = 0
    already_settled: int = 0
    throttle_pauses: int = 0
    retries: int = 0
    cancelled: bool = False
    strategies: Counter = field(default_factory=Counter)
    reasons: list[dict[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_resolved(self, strategy: str) -> None:
        with self._lock:
            self.resolved += 1
            self.strategies[strategy] += 1

    def record_placeholder(self, feed_id: str, item_id: str, reason: str, *, failed: bool, failure_class: str) -> None:
        with self._lock:
            if failed:
                self.failed += 1
            else:
                self.placeholder += 1
            self.reasons.append(
                {
                    "feed_id": feed_id,
                    "item_id": item_id,
                    "outcome": "failed" if failed else "placeholder",
                    "failure_class": failure_class,
                    "reason": reason,
                }
            )

    def record_skipped(self) -> None:
        with self._lock:
            self.skipped += 1

    def record_throttle_pause(self) -> None:
        with self._lock:
            self.throttle_pauses += 1

    def record_retry(self) -> None:
        with self._lock:
            self.retries += 1

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total": self.total,
                "resolved": self.resolved,
                "placeholder": self.placeholder,
                "failed": self.failed,
                "skipped": self.skipped,
                "already_settled": self.already_settled,
                "throttle_pauses": self.throttle_pauses,
                "retries": self.retries,
                "cancelled": self.cancelled,
                "strategies": dict(sorted(self.strategies.items())),
                "reasons": sorted(self.reasons, key=lambda r: (r["feed_id"], r["item_id"])),
            }

    def format_lines(self) -> list[str]:
        data = self.to_dict()
        lines = [
            f"total={data['total']} resolved={data['resolved']} placeholder={data['placeholder']} "
            f"failed={data['failed']} skipped={data['skipped']} already_settled={data['already_settled']}",
            f"throttle_pauses={data['throttle_pauses']} retries={data['retries']} cancelled={data['cancelled']}",
        ]
        for strategy, count in data["strategies"].items():
            lines.append(f"strategy {strategy}: {count}")
        for row in data["reasons"]:
            lines.append(
                f"{row['outcome']} {row['feed_id']}/{row['item_id']} [{row['failure_class']}] {row['reason']}"
            )
        return lines
