"""
Public API for the feed cache.

ArticleCache ties the components of one store together: the entity
database, the blob store, the merge engine, download bookkeeping, eviction
and facsimile derivation. It is the only object the application talks to.
"""

import logging
import sqlite3
from datetime import date
from pathlib import Path
from typing import Optional

from .blob_store import BlobStore
from .config import CacheConfig, default_store_path, load_or_create_config
from .database import Database
from .downloads import DownloadBookkeeper
from .errors import IntegrityError, MergeReport
from .eviction import Evictor
from .facsimile import Facsimiles
from .logging_config import configure_ops_log
from .merge import Merger
from .queries import Queries
from .records import (
    StoredArticle,
    StoredAuthor,
    StoredFeed,
    StoredFeeder,
    StoredFileEntry,
    StoredFrame,
    StoredImage,
    StoredIssue,
    StoredMoment,
    StoredPage,
    StoredPayload,
    StoredResources,
    StoredSection,
)
from .types import Feeder, Issue, Resources, format_date

logger = logging.getLogger(__name__)

DB_FILENAME = "feedcache.db"
FILES_DIRNAME = "files"


class ArticleCache:
    """
    Local mirror of a publication feed.

    Merges feed snapshots into persistent storage, resolves file names to
    local paths, tracks downloads and evicts old issues down to their
    overview. Every mutating call saves before it returns.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[CacheConfig] = None,
    ) -> None:
        """
        Open (or create) a cache store.

        Args:
            store_path: Store directory. Defaults to FEEDCACHE_STORE_PATH
                or ~/.feedcache.
            config: Pre-loaded config (skips reading feedcache.toml).
        """
        if config is not None:
            self._config = config
            self._store_path = Path(config.path)
        else:
            if store_path:
                self._store_path = Path(store_path).expanduser().resolve()
            else:
                self._store_path = default_store_path()
            self._config = load_or_create_config(self._store_path)
        self._store_path.mkdir(parents=True, exist_ok=True)

        self._ops_log_handler = configure_ops_log(self._store_path)

        self._db = Database(self._store_path / DB_FILENAME)
        self._blobs = BlobStore(self._db, self._store_path / FILES_DIRNAME)
        self._queries = Queries(self._db, self._blobs)
        self._merger = Merger(self._db, self._blobs)
        self._evictor = Evictor(self._db, self._blobs, self._merger, self._queries)
        self._facsimiles = Facsimiles(
            self._db, self._blobs, self._merger, self._queries,
            scale=self._config.facsimile_scale,
            quality=self._config.facsimile_quality,
        )
        self.bookkeeper = DownloadBookkeeper(self._db, self._blobs, self._queries)
        self.last_report: Optional[MergeReport] = None

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def blobs(self) -> BlobStore:
        return self._blobs

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    def merge_feeder(self, snapshot: Feeder) -> StoredFeeder:
        """
        Merge a feeder snapshot with all its feeds and issues.

        Issues that fail to merge are rolled back one by one and listed in
        last_report; everything else is saved.
        """
        report = MergeReport()
        with self._db.transaction():
            self._merger.merge_feeder(snapshot, report)
        self._db.save()
        self.last_report = report
        if report.ok:
            logger.info("Merged feeder %s: %d issues", snapshot.title, report.issues_merged)
        else:
            logger.warning("Merged feeder %s: %d issues, %d failures",
                           snapshot.title, report.issues_merged, len(report.errors))
        return self._queries.feeder(snapshot.title)

    def merge_issue(self, snapshot: Issue, feed: StoredFeed) -> StoredIssue:
        """
        Merge a single issue into a stored feed.

        Raises:
            IntegrityError: If the issue cannot be merged; nothing of it is kept
        """
        try:
            with self._db.transaction():
                issue_id = self._merger.merge_issue(feed.id, snapshot)
        except sqlite3.IntegrityError as e:
            raise IntegrityError("Issue", format_date(snapshot.date) or "?", str(e)) from e
        self._db.save()
        logger.info("Merged issue %s of %s", format_date(snapshot.date), feed.name)
        return self._queries.issue(issue_id)

    def merge_resources(self, snapshot: Resources) -> StoredResources:
        with self._db.transaction():
            self._merger.merge_resources(snapshot)
        self._db.save()
        return self._queries.resources(snapshot.resource_version)

    def latest_resources(self) -> Optional[StoredResources]:
        """Resources bundle with the highest version stored."""
        return self._queries.latest_resources()

    def resources_payload(self, resources: StoredResources) -> Optional[StoredPayload]:
        return self._queries.resources_payload(resources)

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def file_for_name(self, name: str) -> Optional[Path]:
        return self._blobs.resolve(name)

    def file_for_checksum(self, sha256: str) -> Optional[Path]:
        entry = self._blobs.find(sha256)
        return self._blobs.path_of(entry) if entry else None

    def file_entry(self, name: str) -> Optional[StoredFileEntry]:
        return self._blobs.get_by_name(name)

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def feeder(self, title: str) -> Optional[StoredFeeder]:
        return self._queries.feeder(title)

    def feeders(self) -> list[StoredFeeder]:
        return self._queries.feeders()

    def feeds(self, feeder: StoredFeeder) -> list[StoredFeed]:
        return self._queries.feeds(feeder)

    def feed(self, feeder: StoredFeeder, name: str) -> Optional[StoredFeed]:
        return self._queries.feed(feeder, name)

    def issue(self, feed: StoredFeed, issue_date: date) -> Optional[StoredIssue]:
        return self._queries.issue_by_date(feed, issue_date)

    def issues_in_feed(self, feed: StoredFeed, count: int = -1,
                       from_date: Optional[date] = None) -> list[StoredIssue]:
        """Issues dated on or before from_date, newest first, at most count."""
        return self._queries.issues_in_feed(feed, count, from_date)

    def latest_issue(self, feed: StoredFeed) -> Optional[StoredIssue]:
        return self._queries.latest_issue(feed)

    def sections(self, issue: StoredIssue) -> list[StoredSection]:
        return self._queries.sections(issue)

    def articles(self, section: StoredSection) -> list[StoredArticle]:
        return self._queries.articles(section)

    def articles_in_issue(self, issue: StoredIssue) -> list[StoredArticle]:
        return self._queries.articles_in_issue(issue)

    def imprint(self, issue: StoredIssue) -> Optional[StoredArticle]:
        return self._queries.imprint(issue)

    def bookmarked_articles(self) -> list[StoredArticle]:
        return self._queries.bookmarked_articles()

    def authors(self, article: StoredArticle) -> list[StoredAuthor]:
        return self._queries.authors(article)

    def images(self, article: StoredArticle) -> list[StoredImage]:
        return self._queries.images(article)

    def pages(self, issue: StoredIssue) -> list[StoredPage]:
        return self._queries.pages(issue)

    def frames(self, page: StoredPage) -> list[StoredFrame]:
        return self._queries.frames(page)

    def article_for_frame(self, frame: StoredFrame) -> Optional[StoredArticle]:
        return self._queries.article_for_frame(frame)

    def moment(self, issue: StoredIssue) -> Optional[StoredMoment]:
        return self._queries.moment(issue)

    def payload(self, issue: StoredIssue) -> Optional[StoredPayload]:
        return self._queries.payload(issue)

    def payload_files(self, payload: StoredPayload) -> list[StoredFileEntry]:
        return self._queries.payload_files(payload)

    def facsimile(self, page: StoredPage) -> Optional[StoredImage]:
        """Facsimile of a page, rendered from its PDF on first request."""
        return self._facsimiles.facsimile(page)

    def moment_facsimile(self, moment: StoredMoment) -> Optional[StoredImage]:
        return self._facsimiles.moment_facsimile(moment)

    # -------------------------------------------------------------------------
    # Reader state
    # -------------------------------------------------------------------------

    def set_bookmark(self, article: StoredArticle, flag: bool = True) -> None:
        self._db.write(
            "UPDATE articles SET has_bookmark = ? WHERE id = ?", (int(flag), article.id)
        )
        self._db.save()

    def set_article_position(self, article: StoredArticle, position: int) -> None:
        self._db.write(
            "UPDATE articles SET last_position = ? WHERE id = ?", (position, article.id)
        )
        self._db.save()

    def set_last_read(self, issue: StoredIssue, *, article: Optional[int] = None,
                      section: Optional[int] = None, page: Optional[int] = None) -> None:
        """Remember the reading position in an issue; None leaves a pointer as is."""
        with self._db.transaction():
            for column, value in (("last_article", article), ("last_section", section),
                                  ("last_page", page)):
                if value is not None:
                    self._db.write(
                        f"UPDATE issues SET {column} = ? WHERE id = ?", (value, issue.id)
                    )
        self._db.save()

    # -------------------------------------------------------------------------
    # Downloads and eviction
    # -------------------------------------------------------------------------

    def set_issue_complete(self, issue: StoredIssue) -> bool:
        return self.bookkeeper.set_issue_complete(issue)

    def reduce_to_overview(self, issue: StoredIssue) -> StoredIssue:
        return self._evictor.reduce_to_overview(issue)

    def reduce_oldest(self, feed: StoredFeed, keep: Optional[int] = None) -> list[StoredIssue]:
        """Reduce complete issues of feed until keep remain (config default)."""
        if keep is None:
            keep = self._config.keep_issues
        return self._evictor.reduce_oldest(feed, keep)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        counts = self._queries.counts()
        counts["stored_bytes"] = self._blobs.total_stored_bytes()
        return counts

    def save(self) -> None:
        self._db.save()

    def close(self) -> None:
        """Close the database and detach the operations log."""
        if hasattr(self, "_db") and self._db is not None:
            self._db.close()
        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None):
            logging.getLogger("feedcache").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
