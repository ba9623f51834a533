"""Fetch third-party RSS feeds and extract one item's fields."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

import feedparser
import requests

from podcastindex.auth import DEFAULT_USER_AGENT
from resolution.cache import ResolutionCache
from resolution.matching import contains_fragment, normalize_text, parse_duration
from resolution.types import ItemFields, NotFound

logger = logging.getLogger(__name__)


def _enclosure_url(entry: Any) -> str:
    for enclosure in entry.get("enclosures") or []:
        href = normalize_text(enclosure.get("href") or enclosure.get("url"))
        if href:
            return href
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" and link.get("href"):
            return normalize_text(link.get("href"))
    return ""


def _image_href(node: Any) -> str:
    image = node.get("image")
    if isinstance(image, dict):
        return normalize_text(image.get("href") or image.get("url"))
    return normalize_text(image) if isinstance(image, str) else ""


def _entry_to_fields(entry: Any) -> dict[str, Any]:
    return {
        "title": normalize_text(entry.get("title")),
        "audio_location": _enclosure_url(entry),
        "duration_seconds": parse_duration(entry.get("itunes_duration")),
        "image": _image_href(entry),
        "author": normalize_text(entry.get("author") or entry.get("itunes_author")),
        "guid": normalize_text(entry.get("id") or entry.get("guid")),
        "link": normalize_text(entry.get("link")),
    }


class FeedFetcher:
    """Retrieves feed documents and finds entries by identifier.

    Upstream feeds are arbitrary documents, so matching accepts both the exact
    guid and identifiers that only appear as a substring of the guid, link or
    enclosure URL. Missing fields stay empty. Nothing raises past this class.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
        cache: ResolutionCache | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = float(timeout_seconds)
        self.user_agent = user_agent
        self._session = session or requests.Session()
        self._cache = cache

    def _load_document(self, feed_location: str) -> dict[str, Any] | NotFound:
        cache_key = f"feed_doc:{feed_location}"
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if isinstance(cached, dict):
                logger.debug("[FEED] fetch=%s cache=hit", feed_location)
                return cached

        try:
            resp = self._session.get(
                feed_location,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_seconds,
            )
        except requests.Timeout:
            logger.info("[FEED] fetch=%s status=timeout", feed_location)
            return NotFound("feed fetch timed out", error="timeout")
        except requests.RequestException as exc:
            logger.info("[FEED] fetch=%s status=error error=%s", feed_location, exc)
            return NotFound(f"feed fetch failed: {exc}", error="connection_error")

        status = int(resp.status_code)
        logger.info("[FEED] fetch=%s status=%s", feed_location, status)
        if status != 200:
            return NotFound(f"feed fetch HTTP {status}", status_code=status, error="http_error")

        try:
            parsed = feedparser.parse(resp.content)
        except Exception as exc:
            logger.warning("[FEED] parse_failed location=%s error=%s", feed_location, exc)
            return NotFound("feed document could not be parsed", status_code=status, error="malformed")

        entries = list(parsed.get("entries") or [])
        if not entries:
            reason = "feed document has no entries"
            if parsed.get("bozo"):
                reason = f"feed document is malformed: {parsed.get('bozo_exception')}"
            return NotFound(reason, status_code=status, error="malformed")

        feed_node = parsed.get("feed") or {}
        document = {
            "feed": {
                "title": normalize_text(feed_node.get("title")),
                "author": normalize_text(feed_node.get("author") or feed_node.get("itunes_author")),
                "image": _image_href(feed_node),
            },
            "entries": [_entry_to_fields(entry) for entry in entries],
        }
        if self._cache is not None:
            self._cache.set(cache_key, document)
        return document

    @staticmethod
    def _to_item_fields(document: dict[str, Any], entry: dict[str, Any], match: str) -> ItemFields:
        feed = document.get("feed") or {}
        fields = {k: v for k, v in entry.items() if k != "link"}
        item = ItemFields(**fields)
        return replace(
            item,
            match=match,
            feed_title=feed.get("title") or "",
            feed_author=feed.get("author") or "",
            feed_image=feed.get("image") or "",
        )

    def fetch_item(self, feed_location: str, item_id: str) -> ItemFields | NotFound:
        location = (feed_location or "").strip()
        item_id = (item_id or "").strip()
        if not location or not item_id:
            raise ValueError("feed_location and item_id are required")

        document = self._load_document(location)
        if isinstance(document, NotFound):
            return document

        entries = document.get("entries") or []
        for entry in entries:
            if entry.get("guid") == item_id:
                return self._to_item_fields(document, entry, "exact")
        for entry in entries:
            if any(contains_fragment(entry.get(name) or "", item_id) for name in ("guid", "link", "audio_location")):
                return self._to_item_fields(document, entry, "partial")
        return NotFound(f"item {item_id} not found in feed", status_code=200, error="not_found")

    def find_by_audio_fragment(self, feed_location: str, fragment: str) -> ItemFields | NotFound:
        location = (feed_location or "").strip()
        fragment = (fragment or "").strip()
        if not location or not fragment:
            raise ValueError("feed_location and fragment are required")

        document = self._load_document(location)
        if isinstance(document, NotFound):
            return document
        for entry in document.get("entries") or []:
            if contains_fragment(entry.get("audio_location") or "", fragment):
                return self._to_item_fields(document, entry, "fragment")
        return NotFound(f"no enclosure matching {fragment}", status_code=200, error="not_found")
