"""Request signing for the Podcast Index API."""

from __future__ import annotations

import hashlib
import time
from typing import Callable

DEFAULT_USER_AGENT = "RemoteItemReconciler/1.0"


def build_auth_headers(
    key: str,
    secret: str,
    clock: Callable[[], float] = time.time,
    *,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict[str, str]:
    """Return signed headers for one request.

    The signature is ``sha1(key + secret + unix_seconds)`` in hex. Timestamps
    older than a few seconds are rejected upstream, so build headers per request.
    """
    api_key = (key or "").strip()
    api_secret = (secret or "").strip()
    if not api_key:
        raise ValueError("api key is required")
    if not api_secret:
        raise ValueError("api secret is required")

    unix_time = str(int(clock()))
    digest = hashlib.sha1(f"{api_key}{api_secret}{unix_time}".encode("utf-8")).hexdigest()
    return {
        "X-Auth-Date": unix_time,
        "X-Auth-Key": api_key,
        "Authorization": digest,
        "User-Agent": user_agent,
    }
