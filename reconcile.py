#!/usr/bin/env python3
"""
Remote item reconciler.
- Resolves (feed id, item id) references to playable tracks through the Podcast Index API,
  the item's own feed, and audio location fragments, in that order.
- Writes every reference to the SQLite store as resolved or as a labeled placeholder.
- Batches requests, pauses the whole run on throttling, and resumes from a checkpoint.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from config.settings import ResolverSettings, load_settings, validate_settings
from db.resolved_tracks import ResolvedTrackStore
from engine.checkpoint import RunCheckpoint
from engine.scheduler import BatchScheduler
from engine.summary import RunSummary
from feeds.fetcher import FeedFetcher
from podcastindex.client import PodcastIndexClient
from resolution.cache import ResolutionCache
from resolution.selector import ResolutionSelector
from resolution.types import RemoteItemRef, ResolutionState

logger = logging.getLogger("reconcile")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(*, verbose: bool = False, log_dir: str = "logs") -> None:
    level = logging.DEBUG if verbose else logging.INFO
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        filename=os.path.join(log_dir, "reconcile.log"),
        level=level,
        format=LOG_FORMAT,
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console.setLevel(level)
    logging.getLogger("").addHandler(console)


def load_refs(path: str | os.PathLike[str]) -> list[RemoteItemRef]:
    """Read references from a JSON list, or an object holding one under ``refs`` or ``remoteItems``."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("refs") or payload.get("remoteItems") or []
    if not isinstance(payload, list):
        raise ValueError("input must be a JSON list of references")
    refs = []
    for idx, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise ValueError(f"input[{idx}] must be an object")
        refs.append(RemoteItemRef.from_dict(entry))
    return refs


def build_scheduler(settings: ResolverSettings, store: ResolvedTrackStore) -> BatchScheduler:
    cache = ResolutionCache(settings.cache_ttl, path=settings.cache_path)
    client = PodcastIndexClient(
        settings.api_key,
        settings.api_secret,
        base_url=settings.api_base_url,
        timeout_seconds=settings.request_timeout,
        user_agent=settings.user_agent,
        cache=cache,
        pool_size=settings.max_workers or settings.batch_size,
    )
    fetcher = FeedFetcher(
        timeout_seconds=settings.request_timeout,
        user_agent=settings.user_agent,
        cache=cache,
    )
    selector = ResolutionSelector(
        client,
        fetcher,
        cache,
        known_feeds=settings.known_feeds,
        fragment_source=store.search_audio_location,
        placeholder_duration_seconds=settings.placeholder_duration,
    )
    checkpoint = RunCheckpoint(settings.checkpoint_path) if settings.checkpoint_path else None
    return BatchScheduler(
        selector,
        store,
        batch_size=settings.batch_size,
        inter_batch_delay=settings.inter_batch_delay,
        max_retries=settings.max_retries,
        max_workers=settings.max_workers,
        throttle_backoff=settings.throttle_backoff,
        retry_delay=settings.retry_delay,
        checkpoint=checkpoint,
        checkpoint_every=settings.checkpoint_every,
    )


def _run_with_signals(scheduler: BatchScheduler, start) -> RunSummary:
    """Run ``start()`` with SIGINT/SIGTERM mapped to cooperative cancellation."""

    def _handle(signum, _frame):
        logger.warning("signal_received signal=%s", signum)
        scheduler.cancel()

    previous = {sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        return start()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _write_summary(summary: RunSummary, path: str | None) -> None:
    for line in summary.format_lines():
        print(line)
    if not path:
        return
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"Wrote run summary: {output_path}")


def _parse_assignments(values: list[str]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"expected key=value, got {item!r}")
        changes[key.strip()] = value
    return changes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve remote item references into canonical track records.")
    parser.add_argument("--config", help="JSON settings file overriding environment values.")
    parser.add_argument("--db", dest="db_path", help="SQLite store path.")
    parser.add_argument("--env-file", default=".env", help="dotenv file loaded before reading settings.")
    parser.add_argument("--log-dir", default="logs")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Resolve every reference in an input file.")
    run.add_argument("--input", required=True, help="JSON list of feedGuid/itemGuid references.")
    run.add_argument("--summary-json", help="Write the run summary to this path.")

    reresolve = sub.add_parser("reresolve", help="Retry records that are placeholders or failed.")
    reresolve.add_argument(
        "--state",
        action="append",
        choices=[ResolutionState.PLACEHOLDER.value, ResolutionState.FAILED.value, ResolutionState.UNRESOLVED.value],
        help="State to re-resolve (repeatable). Defaults to placeholder and failed.",
    )
    reresolve.add_argument("--summary-json", help="Write the run summary to this path.")

    export = sub.add_parser("export", help="Write every record to a JSON snapshot.")
    export.add_argument("--output", required=True)

    load = sub.add_parser("import", help="Merge a JSON snapshot into the store.")
    load.add_argument("--input", required=True)

    fixup = sub.add_parser("fixup", help="Apply an operator correction to one record.")
    fixup.add_argument("--feed-id", required=True)
    fixup.add_argument("--item-id", required=True)
    fixup.add_argument("--set", dest="assignments", action="append", default=[], metavar="FIELD=VALUE")

    sub.add_parser("report", help="Print record counts by state.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.env_file and os.path.exists(args.env_file):
        load_dotenv(args.env_file)
    configure_logging(verbose=args.verbose, log_dir=args.log_dir)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    needs_api = args.command in {"run", "reresolve"}
    errors = validate_settings(settings, require_credentials=needs_api)
    if errors:
        for error in errors:
            logger.error("Invalid configuration: %s", error)
        return 2

    store = ResolvedTrackStore(args.db_path or settings.db_path)
    store.ensure_schema()

    if args.command == "run":
        try:
            refs = load_refs(args.input)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Invalid input %s: %s", args.input, exc)
            return 2
        scheduler = build_scheduler(settings, store)
        summary = _run_with_signals(scheduler, lambda: scheduler.run(refs))
        _write_summary(summary, args.summary_json)
        return 130 if summary.cancelled else 0

    if args.command == "reresolve":
        scheduler = build_scheduler(settings, store)
        states = args.state or [ResolutionState.PLACEHOLDER.value, ResolutionState.FAILED.value]
        summary = _run_with_signals(scheduler, lambda: scheduler.reresolve(states))
        _write_summary(summary, args.summary_json)
        return 130 if summary.cancelled else 0

    if args.command == "export":
        count = store.export_snapshot(args.output)
        print(f"Exported {count} records to {args.output}")
        return 0

    if args.command == "import":
        try:
            count = store.load_snapshot(args.input)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Snapshot import failed: %s", exc)
            return 1
        print(f"Imported {count} records from {args.input}")
        return 0

    if args.command == "fixup":
        try:
            track = store.apply_fixup(args.feed_id, args.item_id, **_parse_assignments(args.assignments))
        except ValueError as exc:
            logger.error("Fixup failed: %s", exc)
            return 1
        print(json.dumps(track.to_dict(), indent=2, ensure_ascii=False))
        return 0

    if args.command == "report":
        print(f"total={store.count()}")
        for state in ResolutionState:
            print(f"{state.value}={store.count(state)}")
        return 0

    parser.print_help(sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
