"""Resolver settings.

Defaults come from the environment. A JSON config file passed to
``load_settings`` overrides them key by key.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from podcastindex.auth import DEFAULT_USER_AGENT
from podcastindex.client import PODCAST_INDEX_BASE_URL

# Requests per batch and the pause between batches.
DEFAULT_BATCH_SIZE = 5
DEFAULT_INTER_BATCH_DELAY_SECONDS = 1.0

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_THROTTLE_BACKOFF_SECONDS = 10.0
DEFAULT_RETRY_DELAY_SECONDS = 1.0

# Feed lookups are cached for an hour.
DEFAULT_CACHE_TTL_SECONDS = 3600

DEFAULT_CHECKPOINT_EVERY = 25
DEFAULT_PLACEHOLDER_DURATION_SECONDS = 180

_ENV_KEYS = {
    "api_key": "PODCAST_INDEX_API_KEY",
    "api_secret": "PODCAST_INDEX_API_SECRET",
    "api_base_url": "PODCAST_INDEX_BASE_URL",
    "user_agent": "RECONCILER_USER_AGENT",
    "batch_size": "RECONCILER_BATCH_SIZE",
    "inter_batch_delay": "RECONCILER_INTER_BATCH_DELAY",
    "request_timeout": "RECONCILER_REQUEST_TIMEOUT",
    "max_retries": "RECONCILER_MAX_RETRIES",
    "max_workers": "RECONCILER_MAX_WORKERS",
    "throttle_backoff": "RECONCILER_THROTTLE_BACKOFF",
    "retry_delay": "RECONCILER_RETRY_DELAY",
    "cache_ttl": "RECONCILER_CACHE_TTL",
    "cache_path": "RECONCILER_CACHE_PATH",
    "db_path": "RECONCILER_DB_PATH",
    "checkpoint_path": "RECONCILER_CHECKPOINT_PATH",
    "checkpoint_every": "RECONCILER_CHECKPOINT_EVERY",
    "placeholder_duration": "RECONCILER_PLACEHOLDER_DURATION",
}
_INT_FIELDS = {"batch_size", "max_retries", "max_workers", "cache_ttl", "checkpoint_every", "placeholder_duration"}
_FLOAT_FIELDS = {"inter_batch_delay", "request_timeout", "throttle_backoff", "retry_delay"}


@dataclass(frozen=True)
class ResolverSettings:
    api_key: str = ""
    api_secret: str = ""
    api_base_url: str = PODCAST_INDEX_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    batch_size: int = DEFAULT_BATCH_SIZE
    inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    max_workers: int | None = None
    throttle_backoff: float = DEFAULT_THROTTLE_BACKOFF_SECONDS
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
    cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS
    cache_path: str | None = None
    db_path: str | None = None
    checkpoint_path: str | None = None
    checkpoint_every: int = DEFAULT_CHECKPOINT_EVERY
    placeholder_duration: int = DEFAULT_PLACEHOLDER_DURATION_SECONDS
    known_feeds: dict[str, str] = field(default_factory=dict)

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict with credentials masked, for logs."""
        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in ("api_key", "api_secret"):
            if payload[name]:
                payload[name] = "***"
        return payload


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None
    if name in _INT_FIELDS:
        return int(value)
    if name in _FLOAT_FIELDS:
        return float(value)
    return value


def _from_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, key in _ENV_KEYS.items():
        raw = env.get(key)
        if raw is None or not str(raw).strip():
            continue
        values[name] = _coerce(name, raw)
    known_feeds = env.get("RECONCILER_KNOWN_FEEDS")
    if known_feeds and known_feeds.strip():
        values["known_feeds"] = json.loads(known_feeds)
    return values


def load_settings(path: str | os.PathLike[str] | None = None, env: Mapping[str, str] | None = None) -> ResolverSettings:
    """Build settings from ``env`` (default ``os.environ``) overlaid by a JSON file.

    Raises ``ValueError`` when the file is not a JSON object or a value cannot
    be converted to its field's type.
    """
    source = os.environ if env is None else env
    values = _from_env(source)
    if path:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("config must be a JSON object")
        known = {f.name for f in fields(ResolverSettings)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")
        for name, value in payload.items():
            values[name] = value if name == "known_feeds" else _coerce(name, value)
    values = {name: value for name, value in values.items() if value is not None}
    if "known_feeds" in values:
        if not isinstance(values["known_feeds"], dict):
            raise ValueError("known_feeds must be an object mapping feed id to URL")
        values["known_feeds"] = {str(k).strip(): str(v).strip() for k, v in values["known_feeds"].items()}
    return replace(ResolverSettings(), **values)


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def validate_settings(settings: ResolverSettings, *, require_credentials: bool = True) -> list[str]:
    errors = []
    if require_credentials:
        if not settings.api_key:
            errors.append("api_key is required (PODCAST_INDEX_API_KEY)")
        if not settings.api_secret:
            errors.append("api_secret is required (PODCAST_INDEX_API_SECRET)")
    if not _is_http_url(settings.api_base_url):
        errors.append("api_base_url must be an http(s) URL")
    if settings.batch_size <= 0:
        errors.append("batch_size must be > 0")
    if settings.inter_batch_delay < 0:
        errors.append("inter_batch_delay must be >= 0")
    if settings.request_timeout <= 0:
        errors.append("request_timeout must be > 0")
    if settings.max_retries < 0:
        errors.append("max_retries must be >= 0")
    if settings.max_workers is not None and settings.max_workers <= 0:
        errors.append("max_workers must be > 0")
    if settings.throttle_backoff <= 0:
        errors.append("throttle_backoff must be > 0")
    if settings.retry_delay < 0:
        errors.append("retry_delay must be >= 0")
    if settings.cache_ttl <= 0:
        errors.append("cache_ttl must be > 0")
    if settings.checkpoint_every <= 0:
        errors.append("checkpoint_every must be > 0")
    if settings.placeholder_duration <= 0:
        errors.append("placeholder_duration must be > 0")
    for feed_id, url in settings.known_feeds.items():
        if not feed_id:
            errors.append("known_feeds contains an empty feed id")
        elif not _is_http_url(url):
            errors.append(f"known_feeds[{feed_id}] must be an http(s) URL")
    return errors
