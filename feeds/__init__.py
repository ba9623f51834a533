from feeds.fetcher import FeedFetcher

__all__ = ["FeedFetcher"]
