"""Pure text helpers used by the resolution strategies."""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any
from urllib.parse import unquote, urlparse

_WS_RE = re.compile(r"\s+")
_DURATION_RE = re.compile(r"^\d+(?::\d{1,2}){0,2}$")
_ARTIST_TITLE_SEP = " - "


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", str(value))
    return _WS_RE.sub(" ", text).strip()


def looks_like_url(value: str) -> bool:
    text = (value or "").strip().lower()
    if text.startswith(("http://", "https://")):
        return True
    return "/" in text and "." in text


def trailing_segment(value: str) -> str:
    """Return the last non-empty path segment of a URL-ish identifier, without query or fragment."""
    text = (value or "").strip()
    if not text:
        return ""
    parsed = urlparse(text if "://" in text else f"//{text}")
    path = parsed.path or ""
    segments = [seg for seg in path.split("/") if seg]
    if not segments:
        return ""
    return unquote(segments[-1])


def split_artist_title(title: str) -> tuple[str, str]:
    """Split ``"Artist - Title"`` into its parts; returns ``("", title)`` when no separator is present."""
    text = normalize_text(title)
    if _ARTIST_TITLE_SEP not in text:
        return "", text
    artist, rest = text.split(_ARTIST_TITLE_SEP, 1)
    artist = artist.strip()
    rest = rest.strip()
    if not artist or not rest:
        return "", text
    return artist, rest


def parse_duration(value: Any) -> int:
    """Parse seconds, ``MM:SS`` or ``HH:MM:SS`` into whole seconds; 0 when unknown."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    text = str(value).strip()
    if not text:
        return 0
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return max(0, int(seconds)) if math.isfinite(seconds) else 0
    if not _DURATION_RE.match(text):
        return 0
    total = 0
    for part in text.split(":"):
        total = total * 60 + int(part)
    return total


def contains_fragment(haystack: str, needle: str) -> bool:
    if not haystack or not needle:
        return False
    return needle.lower() in haystack.lower()
