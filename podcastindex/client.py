"""Podcast Index API client."""

from __future__ import annotations

import logging
import time
from email.utils import parsedate_to_datetime
from typing import Any, Callable
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter

from podcastindex.auth import DEFAULT_USER_AGENT, build_auth_headers
from resolution.cache import ResolutionCache
from resolution.types import FeedInfo, ItemInfo, NotFound, Throttled
from resolution.matching import normalize_text, parse_duration

logger = logging.getLogger(__name__)

PODCAST_INDEX_BASE_URL = "https://api.podcastindex.org/api/1.0"
THROTTLE_STATUS_CODES = frozenset({429})


def _require(name: str, value: str) -> str:
    cleaned = (value or "").strip() if isinstance(value, str) else ""
    if not cleaned:
        raise ValueError(f"{name} is required")
    return cleaned


def parse_retry_after(value: str | None, *, now: float) -> float | None:
    if not value:
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - now)


class PodcastIndexClient:
    """Signed lookups against the Podcast Index API.

    The client never sleeps or retries. A throttling response is returned as
    ``Throttled`` so the batch scheduler can pause the whole run; every other
    failure comes back as ``NotFound`` with the HTTP status and error kind.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = PODCAST_INDEX_BASE_URL,
        timeout_seconds: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        cache: ResolutionCache | None = None,
        pool_size: int = 10,
    ) -> None:
        self.api_key = _require("api_key", api_key)
        self.api_secret = _require("api_secret", api_secret)
        self.base_url = base_url.rstrip("/") + "/"
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = float(timeout_seconds)
        self.user_agent = user_agent
        self._clock = clock
        self._cache = cache
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    def _get_json(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any] | NotFound | Throttled:
        url = urljoin(self.base_url, endpoint.lstrip("/"))
        headers = build_auth_headers(self.api_key, self.api_secret, self._clock, user_agent=self.user_agent)
        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=self.timeout_seconds)
        except requests.Timeout:
            logger.info("[PODCASTINDEX] request=%s status=timeout", endpoint)
            return NotFound("request timed out", error="timeout")
        except requests.RequestException as exc:
            logger.info("[PODCASTINDEX] request=%s status=error error=%s", endpoint, exc)
            return NotFound(f"request failed: {exc}", error="connection_error")

        status = int(resp.status_code)
        logger.info("[PODCASTINDEX] request=%s status=%s", endpoint, status)
        if status in THROTTLE_STATUS_CODES:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"), now=self._clock())
            return Throttled(retry_after=retry_after, reason=f"throttled (HTTP {status})")
        if status != 200:
            return NotFound(f"HTTP {status}", status_code=status, error="http_error")
        try:
            payload = resp.json()
        except ValueError:
            return NotFound("response body is not JSON", status_code=status, error="malformed")
        if not isinstance(payload, dict):
            return NotFound("response body is not an object", status_code=status, error="malformed")
        if str(payload.get("status")).lower() != "true":
            description = normalize_text(payload.get("description")) or "status is not true"
            return NotFound(description, status_code=status, error="not_found")
        return payload

    def lookup_feed(self, feed_id: str) -> FeedInfo | NotFound | Throttled:
        feed_id = _require("feed_id", feed_id)
        cache_key = f"feed:{feed_id}"
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if isinstance(cached, dict):
                logger.debug("[PODCASTINDEX] request=podcasts/byguid cache=hit feed=%s", feed_id)
                return FeedInfo.from_dict(cached)

        payload = self._get_json("podcasts/byguid", {"guid": feed_id})
        if not isinstance(payload, dict):
            return payload
        feed = payload.get("feed")
        if not isinstance(feed, dict) or not feed:
            return NotFound("feed missing from response", status_code=200, error="not_found")

        raw_index_id = feed.get("id")
        try:
            index_id = int(raw_index_id) if raw_index_id is not None else None
        except (TypeError, ValueError):
            index_id = None
        info = FeedInfo(
            feed_id=feed_id,
            title=normalize_text(feed.get("title")),
            location=normalize_text(feed.get("url") or feed.get("originalUrl")),
            artwork=normalize_text(feed.get("artwork") or feed.get("image")),
            author=normalize_text(feed.get("author") or feed.get("ownerName")),
            index_id=index_id,
        )
        if self._cache is not None:
            self._cache.set(cache_key, info.to_dict())
        return info

    def lookup_item(self, feed_id: str, item_id: str) -> ItemInfo | NotFound | Throttled:
        feed_id = _require("feed_id", feed_id)
        item_id = _require("item_id", item_id)
        payload = self._get_json("episodes/byguid", {"guid": item_id, "feedguid": feed_id})
        if not isinstance(payload, dict):
            return payload
        episode = payload.get("episode")
        if not isinstance(episode, dict) or not episode:
            return NotFound("episode missing from response", status_code=200, error="not_found")
        return ItemInfo(
            title=normalize_text(episode.get("title")),
            audio_location=normalize_text(episode.get("enclosureUrl")),
            duration_seconds=parse_duration(episode.get("duration")),
            image=normalize_text(episode.get("image")),
            author=normalize_text(episode.get("author")),
            feed_title=normalize_text(episode.get("feedTitle")),
            feed_image=normalize_text(episode.get("feedImage")),
        )
