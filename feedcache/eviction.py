"""
Eviction: shrink issues down to their overview.

An overview issue keeps what a feed browser shows without opening the
issue: the moment (cover images, credits, animation) and the first page's
PDF. Sections, articles, the imprint and every other payload file go.
"""

import logging

from .blob_store import BlobStore
from .database import Database
from .merge import Merger
from .queries import Queries
from .records import StoredFeed, StoredIssue

logger = logging.getLogger(__name__)


class Evictor:
    """Reduces complete issues to overview issues."""

    def __init__(self, db: Database, blobs: BlobStore, merger: Merger, queries: Queries):
        self._db = db
        self._blobs = blobs
        self._merger = merger
        self._queries = queries

    def overview_file_ids(self, issue: StoredIssue) -> set[int]:
        """File entries an overview issue keeps."""
        keep: set[int] = set()
        moment = self._queries.moment(issue)
        if moment is not None:
            for image in self._queries.moment_images(moment):
                keep.add(image.file.id)
            for image in self._queries.moment_credited_images(moment):
                keep.add(image.file.id)
            for entry in self._queries.moment_animation(moment):
                keep.add(entry.id)
        pages = self._queries.pages(issue)
        if pages and pages[0].pdf_id is not None:
            keep.add(pages[0].pdf_id)
        return keep

    def _reduce(self, issue: StoredIssue) -> None:
        # The caller's record may predate a re-merge
        issue = self._queries.issue(issue.id)
        if issue is None:
            return
        for section in self._queries.sections(issue):
            self._merger.delete_section(section.id)

        if issue.imprint_id is not None:
            self._db.write("UPDATE issues SET imprint_id = NULL WHERE id = ?", (issue.id,))
            self._merger.release_article(issue.imprint_id)

        for page in self._queries.pages(issue)[1:]:
            if page.facsimile_id is not None:
                self._db.write("UPDATE pages SET facsimile_id = NULL WHERE id = ?", (page.id,))
                self._merger.release_image(page.facsimile_id)

        payload = self._queries.payload(issue)
        if payload is not None:
            keep = self.overview_file_ids(issue)
            remaining = []
            for entry in self._queries.payload_files(payload):
                if entry.id in keep:
                    remaining.append(entry)
                    continue
                self._db.write(
                    "DELETE FROM payload_files WHERE payload_id = ? AND file_id = ?",
                    (payload.id, entry.id),
                )
                self._blobs.delete(entry)
            for position, entry in enumerate(remaining):
                self._db.write(
                    "UPDATE payload_files SET position = ? WHERE payload_id = ? AND file_id = ?",
                    (position, payload.id, entry.id),
                )
            bytes_total = sum(entry.size for entry in remaining)
            self._db.write("""
                UPDATE payloads SET bytes_total = ?, bytes_loaded = MIN(bytes_loaded, ?)
                WHERE id = ?
            """, (bytes_total, bytes_total, payload.id))

        self._db.write(
            "UPDATE issues SET is_complete = 0, is_ovw_complete = 1 WHERE id = ?", (issue.id,)
        )

    def reduce_to_overview(self, issue: StoredIssue) -> StoredIssue:
        """Reduce one issue to its overview and save. Idempotent."""
        with self._db.transaction():
            self._reduce(issue)
        self._db.save()
        logger.info("Reduced issue %s to overview", issue.date)
        return self._queries.issue(issue.id)

    def reduce_oldest(self, feed: StoredFeed, keep: int) -> list[StoredIssue]:
        """
        Reduce the earliest downloaded complete issues of a feed.

        Args:
            feed: Feed whose issues are reduced
            keep: Number of complete issues left afterwards

        Returns:
            The reduced issues, earliest download first
        """
        if keep < 0:
            raise ValueError(f"keep must not be negative: {keep}")
        with self._db.transaction():
            complete = self._queries.first_loaded(feed)
            victims = complete[:max(0, len(complete) - keep)]
            for issue in victims:
                self._reduce(issue)
        if not victims:
            return []
        self._db.save()
        logger.info("Reduced %d issues of feed %s (keeping %d)", len(victims), feed.name, keep)
        return [self._queries.issue(issue.id) for issue in victims]

