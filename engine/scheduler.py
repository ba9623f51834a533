"""Batch scheduler driving the resolution selector over a list of references."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Sequence

from engine.checkpoint import RunCheckpoint
from engine.summary import RunSummary
from resolution.types import FailureClass, RemoteItemRef, ResolutionState, ResolvedTrack

logger = logging.getLogger(__name__)

_PAUSE_POLL_SECONDS = 1.0


def _coerce_ref(value: Any) -> RemoteItemRef:
    if isinstance(value, RemoteItemRef):
        return value
    if isinstance(value, dict):
        return RemoteItemRef.from_dict(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return RemoteItemRef(value[0], value[1])
    raise TypeError(f"unsupported reference: {value!r}")


class BatchScheduler:
    """Runs resolution in fixed-size batches with bounded concurrency.

    Retry and backoff live here, not in the client. A throttled response
    pauses the whole run: the shared resume deadline moves out and every
    worker waits for it before its next attempt.
    """

    def __init__(
        self,
        selector,
        store,
        *,
        batch_size: int,
        inter_batch_delay: float,
        max_retries: int,
        max_workers: int | None = None,
        throttle_backoff: float = 10.0,
        retry_delay: float = 1.0,
        checkpoint: RunCheckpoint | None = None,
        checkpoint_every: int = 25,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(batch_size) <= 0:
            raise ValueError("batch_size must be > 0")
        if float(inter_batch_delay) < 0:
            raise ValueError("inter_batch_delay must be >= 0")
        if int(max_retries) < 0:
            raise ValueError("max_retries must be >= 0")
        if max_workers is not None and int(max_workers) <= 0:
            raise ValueError("max_workers must be > 0")
        if float(throttle_backoff) <= 0:
            raise ValueError("throttle_backoff must be > 0")
        if float(retry_delay) < 0:
            raise ValueError("retry_delay must be >= 0")
        if int(checkpoint_every) <= 0:
            raise ValueError("checkpoint_every must be > 0")
        self._selector = selector
        self._store = store
        self.batch_size = int(batch_size)
        self.inter_batch_delay = float(inter_batch_delay)
        self.max_retries = int(max_retries)
        self.max_workers = int(max_workers) if max_workers is not None else self.batch_size
        self.throttle_backoff = float(throttle_backoff)
        self.retry_delay = float(retry_delay)
        self._checkpoint = checkpoint
        self._checkpoint_every = int(checkpoint_every)
        self._stop = stop_event or threading.Event()
        self._sleep = sleep
        self._clock = clock
        self._pause_lock = threading.Lock()
        self._resume_at = 0.0

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        """Stop scheduling new items; in-flight items finish normally."""
        if not self._stop.is_set():
            logger.info("run_cancel_requested")
        self._stop.set()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def run(self, refs: Iterable[Any], *, reresolve: bool = False) -> RunSummary:
        unique = self._dedupe(refs)
        summary = RunSummary(total=len(unique))
        # re-resolution leaves an interrupted run's resume state alone
        checkpoint = None if reresolve else self._checkpoint
        work: list[tuple[RemoteItemRef, int]] = []
        for position, ref in enumerate(unique, start=1):
            existing = self._store.get(ref.feed_id, ref.item_id)
            if existing is None:
                existing = self._store.upsert(ResolvedTrack.unresolved(ref))
            if existing.resolution_state.is_settled and not reresolve:
                summary.already_settled += 1
                continue
            if checkpoint is not None and checkpoint.is_settled(ref.key):
                summary.already_settled += 1
                continue
            work.append((ref, position))

        batches = [work[i : i + self.batch_size] for i in range(0, len(work), self.batch_size)]
        logger.info(
            "run_started total=%s pending=%s batches=%s reresolve=%s",
            summary.total,
            len(work),
            len(batches),
            reresolve,
        )
        for index, batch in enumerate(batches, start=1):
            if self._stop.is_set():
                for _ in batch:
                    summary.record_skipped()
                continue
            self._run_batch(batch, summary, checkpoint)
            if checkpoint is not None:
                checkpoint.save()
            logger.info("batch_complete index=%s size=%s of=%s", index, len(batch), len(batches))
            if index < len(batches) and self.inter_batch_delay > 0 and not self._stop.is_set():
                self._sleep(self.inter_batch_delay)

        summary.cancelled = self._stop.is_set()
        if checkpoint is not None and not summary.cancelled:
            checkpoint.clear()
        logger.info(
            "run_finished resolved=%s placeholder=%s failed=%s skipped=%s already_settled=%s cancelled=%s",
            summary.resolved,
            summary.placeholder,
            summary.failed,
            summary.skipped,
            summary.already_settled,
            summary.cancelled,
        )
        return summary

    def reresolve(
        self,
        states: Sequence[ResolutionState | str] = (ResolutionState.PLACEHOLDER, ResolutionState.FAILED),
    ) -> RunSummary:
        """Operator-triggered pass over records currently in ``states``."""
        refs: list[RemoteItemRef] = []
        for state in states:
            refs.extend(RemoteItemRef(t.feed_id, t.item_id) for t in self._store.list_pending(state))
        logger.info("reresolve_requested states=%s count=%s", ",".join(ResolutionState(s).value for s in states), len(refs))
        return self.run(refs, reresolve=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _dedupe(refs: Iterable[Any]) -> list[RemoteItemRef]:
        seen: set[tuple[str, str]] = set()
        unique: list[RemoteItemRef] = []
        for value in refs:
            ref = _coerce_ref(value)
            if ref.key in seen:
                continue
            seen.add(ref.key)
            unique.append(ref)
        return unique

    def _run_batch(
        self,
        batch: list[tuple[RemoteItemRef, int]],
        summary: RunSummary,
        checkpoint: RunCheckpoint | None,
    ) -> None:
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch))) as pool:
            futures = [pool.submit(self._run_item, ref, position, summary, checkpoint) for ref, position in batch]
            for future in futures:
                future.result()

    def _run_item(
        self,
        ref: RemoteItemRef,
        position: int,
        summary: RunSummary,
        checkpoint: RunCheckpoint | None,
    ) -> None:
        try:
            settled = self._process(ref, position, summary)
        except Exception as exc:
            logger.exception("item_failed ref=%s/%s", ref.feed_id, ref.item_id)
            reason = f"unexpected error: {exc}"
            try:
                existing = self._store.get(ref.feed_id, ref.item_id)
                prior = existing.attempt_count if existing else 0
                self._store.upsert(self._selector.placeholder_for(ref, reason, prior_attempts=prior, position=position))
            except Exception:
                logger.exception("placeholder_write_failed ref=%s/%s", ref.feed_id, ref.item_id)
            summary.record_placeholder(ref.feed_id, ref.item_id, reason, failed=True, failure_class="error")
            settled = True
        if settled and checkpoint is not None:
            if checkpoint.mark_settled(ref.key) >= self._checkpoint_every:
                checkpoint.save()

    def _process(self, ref: RemoteItemRef, position: int, summary: RunSummary) -> bool:
        existing = self._store.get(ref.feed_id, ref.item_id)
        prior = existing.attempt_count if existing else 0
        retries = 0
        while True:
            self._wait_for_resume()
            if self._stop.is_set():
                summary.record_skipped()
                return False
            outcome = self._selector.resolve(ref, prior_attempts=prior, position=position)
            prior += outcome.attempts
            if outcome.resolved:
                self._store.upsert(outcome.track)
                summary.record_resolved(outcome.track.resolution_strategy)
                return True

            failure_class = outcome.failure_class or FailureClass.PERMANENT
            if failure_class is FailureClass.THROTTLED:
                self._pause_run(outcome.retry_after or self.throttle_backoff, summary)
            if failure_class.retryable and retries < self.max_retries:
                retries += 1
                summary.record_retry()
                if failure_class is not FailureClass.THROTTLED:
                    delay = self.retry_delay * 2 ** (retries - 1)
                    logger.info(
                        "item_retry ref=%s/%s attempt=%s delay=%.2f reason=%s",
                        ref.feed_id,
                        ref.item_id,
                        retries,
                        delay,
                        outcome.reason,
                    )
                    if delay > 0:
                        self._sleep(delay)
                continue

            self._store.upsert(outcome.track)
            summary.record_placeholder(
                ref.feed_id,
                ref.item_id,
                outcome.reason,
                failed=failure_class.retryable,
                failure_class=failure_class.value,
            )
            logger.info(
                "item_placeholder ref=%s/%s failure_class=%s reason=%s",
                ref.feed_id,
                ref.item_id,
                failure_class.value,
                outcome.reason,
            )
            return True

    def _pause_run(self, seconds: float, summary: RunSummary) -> None:
        with self._pause_lock:
            deadline = self._clock() + max(float(seconds), 0.0)
            if deadline <= self._resume_at:
                return
            self._resume_at = deadline
        summary.record_throttle_pause()
        logger.warning("run_paused reason=throttled seconds=%.2f", seconds)

    def _wait_for_resume(self) -> None:
        while not self._stop.is_set():
            with self._pause_lock:
                remaining = self._resume_at - self._clock()
            if remaining <= 0:
                return
            self._sleep(min(remaining, _PAUSE_POLL_SECONDS))
