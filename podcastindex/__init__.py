"""Podcast Index API access."""

from podcastindex.auth import build_auth_headers
from podcastindex.client import PodcastIndexClient

__all__ = ["PodcastIndexClient", "build_auth_headers"]
