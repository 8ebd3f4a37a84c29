"""
Feed Cache

A local mirror of a periodical publication feed: feeders, feeds, issues,
sections, articles, pages and the files they are made of.

Quick Start:
    from feedcache import ArticleCache
    from feedcache.snapshot import load_snapshot

    with ArticleCache("~/.feedcache") as cache:
        feeder = cache.merge_feeder(load_snapshot("feeder.json"))
        feed = cache.feed(feeder, "daily")
        for issue in cache.issues_in_feed(feed, count=5):
            print(issue.date)

CLI Usage:
    feedcache merge feeder.json
    feedcache issues "My Feeder" daily -n 5
    feedcache reduce "My Feeder" daily --keep 10

Environment Variables:
    FEEDCACHE_STORE_PATH     - Override default store location (~/.feedcache)

The store is created on first use. Configuration is persisted in a TOML
file within the store directory.
"""

from .api import ArticleCache
from .errors import FeedCacheError, IntegrityError, MergeReport, PersistenceError

__version__ = "0.1.0"

__all__ = [
    "ArticleCache",
    "FeedCacheError",
    "IntegrityError",
    "MergeReport",
    "PersistenceError",
]
