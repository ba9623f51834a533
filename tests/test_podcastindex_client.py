from __future__ import annotations

import hashlib
from typing import Any

import pytest
import requests

from podcastindex.auth import build_auth_headers
from podcastindex.client import PodcastIndexClient, parse_retry_after
from resolution.cache import ResolutionCache
from resolution.selector import classify_failure
from resolution.types import FailureClass, FeedInfo, ItemInfo, NotFound, Throttled


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(session: _FakeSession, **kwargs) -> PodcastIndexClient:
    return PodcastIndexClient("key", "secret", session=session, clock=lambda: 1700000000.0, **kwargs)


def test_auth_headers_sign_key_secret_and_timestamp() -> None:
    headers = build_auth_headers("key", "secret", lambda: 1700000000.9, user_agent="Test/1.0")

    assert headers["X-Auth-Date"] == "1700000000"
    assert headers["X-Auth-Key"] == "key"
    assert headers["Authorization"] == hashlib.sha1(b"keysecret1700000000").hexdigest()
    assert headers["User-Agent"] == "Test/1.0"


def test_auth_headers_require_credentials() -> None:
    with pytest.raises(ValueError):
        build_auth_headers("", "secret")
    with pytest.raises(ValueError):
        build_auth_headers("key", "  ")


def test_lookup_item_maps_episode_fields() -> None:
    session = _FakeSession(
        [
            _FakeResponse(
                200,
                {
                    "status": "true",
                    "episode": {
                        "title": "Midnight Run",
                        "enclosureUrl": "https://cdn.example.com/audio/midnight-run.mp3",
                        "duration": 245,
                        "image": "",
                        "feedImage": "https://cdn.example.com/art.jpg",
                        "feedTitle": "Night Drive",
                    },
                },
            )
        ]
    )
    client = _client(session)

    result = client.lookup_item("feed-guid-1", "item-guid-1")

    assert isinstance(result, ItemInfo)
    assert result.title == "Midnight Run"
    assert result.audio_location == "https://cdn.example.com/audio/midnight-run.mp3"
    assert result.duration_seconds == 245
    assert result.feed_image == "https://cdn.example.com/art.jpg"
    call = session.calls[0]
    assert call["url"].endswith("/episodes/byguid")
    assert call["params"] == {"guid": "item-guid-1", "feedguid": "feed-guid-1"}
    assert call["headers"]["X-Auth-Key"] == "key"
    assert call["timeout"] == 10.0


def test_lookup_item_treats_overflowing_duration_as_unknown() -> None:
    episode = {"title": "Midnight Run", "enclosureUrl": "https://cdn.example.com/audio/midnight-run.mp3", "duration": float("inf")}
    client = _client(_FakeSession([_FakeResponse(200, {"status": "true", "episode": episode})]))

    result = client.lookup_item("feed-guid-1", "item-guid-1")

    assert isinstance(result, ItemInfo)
    assert result.duration_seconds == 0


def test_throttle_response_returns_throttled_with_retry_after() -> None:
    session = _FakeSession([_FakeResponse(429, {}, headers={"Retry-After": "30"})])

    result = _client(session).lookup_item("feed", "item")

    assert isinstance(result, Throttled)
    assert result.retry_after == 30.0


def test_server_error_is_transient_not_found() -> None:
    session = _FakeSession([_FakeResponse(503, {})])

    result = _client(session).lookup_item("feed", "item")

    assert isinstance(result, NotFound)
    assert result.status_code == 503
    assert classify_failure(result) is FailureClass.TRANSIENT


def test_timeout_and_connection_errors_never_raise() -> None:
    session = _FakeSession([requests.Timeout("slow"), requests.ConnectionError("down")])
    client = _client(session)

    timed_out = client.lookup_item("feed", "item")
    refused = client.lookup_item("feed", "item")

    assert isinstance(timed_out, NotFound) and timed_out.error == "timeout"
    assert isinstance(refused, NotFound) and refused.error == "connection_error"
    assert classify_failure(refused) is FailureClass.TRANSIENT


def test_status_false_and_bad_json_are_not_found() -> None:
    session = _FakeSession(
        [
            _FakeResponse(200, {"status": "false", "description": "No episodes match"}),
            _FakeResponse(200, ValueError("no json")),
        ]
    )
    client = _client(session)

    missing = client.lookup_item("feed", "item")
    broken = client.lookup_item("feed", "item")

    assert isinstance(missing, NotFound)
    assert missing.reason == "No episodes match"
    assert classify_failure(missing) is FailureClass.PERMANENT
    assert isinstance(broken, NotFound)
    assert classify_failure(broken) is FailureClass.MALFORMED


def test_lookup_feed_is_cached() -> None:
    session = _FakeSession(
        [
            _FakeResponse(
                200,
                {
                    "status": "true",
                    "feed": {
                        "id": 42,
                        "title": "Night Drive",
                        "url": "https://feeds.example.com/night-drive.xml",
                        "artwork": "https://cdn.example.com/art.jpg",
                        "author": "Neon Coast",
                    },
                },
            )
        ]
    )
    cache = ResolutionCache(3600, clock=lambda: 0.0)
    client = _client(session, cache=cache)

    first = client.lookup_feed("feed-guid-1")
    second = client.lookup_feed("feed-guid-1")

    assert isinstance(first, FeedInfo)
    assert first.location == "https://feeds.example.com/night-drive.xml"
    assert first.index_id == 42
    assert second == first
    assert len(session.calls) == 1


def test_client_rejects_empty_ids() -> None:
    client = _client(_FakeSession([]))

    with pytest.raises(ValueError):
        client.lookup_item("", "item")
    with pytest.raises(ValueError):
        client.lookup_feed(" ")


def test_parse_retry_after_accepts_seconds_and_http_dates() -> None:
    assert parse_retry_after("12", now=0.0) == 12.0
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=1445412450.0) == 30.0
    assert parse_retry_after("soon", now=0.0) is None
    assert parse_retry_after(None, now=0.0) is None
