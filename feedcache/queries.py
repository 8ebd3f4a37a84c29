"""
Read-side queries over the stored entity graph.

All lookups return Stored* records; a missing entity is None and an empty
collection is an empty list. Ordered collections come back in the
position order of the last merge.
"""

from datetime import date
from typing import Optional

from .blob_store import BlobStore
from .database import Database
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
    article_from_row,
    author_from_row,
    feed_from_row,
    feeder_from_row,
    file_from_row,
    frame_from_row,
    image_from_row,
    issue_from_row,
    moment_from_row,
    page_from_row,
    payload_from_row,
    resources_from_row,
    section_from_row,
)
from .types import format_date

_ARTICLE_SELECT = """
    SELECT a.*, f.name AS html_name FROM articles a
    LEFT JOIN file_entries f ON a.html_id = f.id
"""
_SECTION_SELECT = """
    SELECT s.*, f.name AS html_name FROM sections s
    LEFT JOIN file_entries f ON s.html_id = f.id
"""
_PAGE_SELECT = """
    SELECT p.*, f.name AS pdf_name FROM pages p
    LEFT JOIN file_entries f ON p.pdf_id = f.id
"""


class Queries:
    """Navigation over feeders, feeds, issues and their content."""

    def __init__(self, db: Database, blobs: BlobStore):
        self._db = db
        self._blobs = blobs

    # -------------------------------------------------------------------------
    # Feeder, feeds, issues
    # -------------------------------------------------------------------------

    def feeder(self, title: str) -> Optional[StoredFeeder]:
        row = self._db.query_one("SELECT * FROM feeders WHERE title = ?", (title,))
        return feeder_from_row(row) if row else None

    def feeders(self) -> list[StoredFeeder]:
        return [feeder_from_row(r) for r in self._db.query("SELECT * FROM feeders ORDER BY title")]

    def feeds(self, feeder: StoredFeeder) -> list[StoredFeed]:
        rows = self._db.query(
            "SELECT * FROM feeds WHERE feeder_id = ? ORDER BY name", (feeder.id,)
        )
        return [feed_from_row(r) for r in rows]

    def feed(self, feeder: StoredFeeder, name: str) -> Optional[StoredFeed]:
        row = self._db.query_one(
            "SELECT * FROM feeds WHERE feeder_id = ? AND name = ?", (feeder.id, name)
        )
        return feed_from_row(row) if row else None

    def feed_by_id(self, feed_id: int) -> Optional[StoredFeed]:
        row = self._db.query_one("SELECT * FROM feeds WHERE id = ?", (feed_id,))
        return feed_from_row(row) if row else None

    def issue(self, issue_id: int) -> Optional[StoredIssue]:
        row = self._db.query_one("SELECT * FROM issues WHERE id = ?", (issue_id,))
        return issue_from_row(row) if row else None

    def issue_by_date(self, feed: StoredFeed, issue_date: date) -> Optional[StoredIssue]:
        row = self._db.query_one(
            "SELECT * FROM issues WHERE feed_id = ? AND date = ?",
            (feed.id, format_date(issue_date)),
        )
        return issue_from_row(row) if row else None

    def issues_in_feed(self, feed: StoredFeed, count: int = -1,
                       from_date: Optional[date] = None) -> list[StoredIssue]:
        """
        Issues of a feed, newest first.

        Args:
            feed: The feed to list
            count: Maximum number of issues; zero or negative for all
            from_date: Only issues dated on or before this date
        """
        sql = "SELECT * FROM issues WHERE feed_id = ?"
        params: tuple = (feed.id,)
        if from_date is not None:
            sql += " AND date <= ?"
            params += (format_date(from_date),)
        sql += " ORDER BY date DESC"
        if count > 0:
            sql += " LIMIT ?"
            params += (count,)
        return [issue_from_row(r) for r in self._db.query(sql, params)]

    def latest_issue(self, feed: StoredFeed) -> Optional[StoredIssue]:
        issues = self.issues_in_feed(feed, count=1)
        return issues[0] if issues else None

    def first_loaded(self, feed: StoredFeed) -> list[StoredIssue]:
        """Complete issues of a feed, earliest download start first."""
        rows = self._db.query("""
            SELECT i.* FROM issues i
            LEFT JOIN payloads p ON p.issue_id = i.id
            WHERE i.feed_id = ? AND i.is_complete = 1
            ORDER BY p.download_started ASC, i.date ASC
        """, (feed.id,))
        return [issue_from_row(r) for r in rows]

    # -------------------------------------------------------------------------
    # Sections, articles, authors
    # -------------------------------------------------------------------------

    def sections(self, issue: StoredIssue) -> list[StoredSection]:
        rows = self._db.query(
            _SECTION_SELECT + " WHERE s.issue_id = ? ORDER BY s.position", (issue.id,)
        )
        return [section_from_row(r) for r in rows]

    def article(self, article_id: Optional[int]) -> Optional[StoredArticle]:
        if article_id is None:
            return None
        row = self._db.query_one(_ARTICLE_SELECT + " WHERE a.id = ?", (article_id,))
        return article_from_row(row) if row else None

    def article_by_name(self, html_name: str) -> Optional[StoredArticle]:
        row = self._db.query_one(_ARTICLE_SELECT + " WHERE f.name = ?", (html_name,))
        return article_from_row(row) if row else None

    def articles(self, section: StoredSection) -> list[StoredArticle]:
        rows = self._db.query(_ARTICLE_SELECT + """
            JOIN section_articles sa ON sa.article_id = a.id
            WHERE sa.section_id = ?
            ORDER BY sa.position
        """, (section.id,))
        return [article_from_row(r) for r in rows]

    def articles_in_issue(self, issue: StoredIssue) -> list[StoredArticle]:
        """All articles of an issue in reading order, each once."""
        result: list[StoredArticle] = []
        seen: set[int] = set()
        for section in self.sections(issue):
            for article in self.articles(section):
                if article.id not in seen:
                    seen.add(article.id)
                    result.append(article)
        return result

    def imprint(self, issue: StoredIssue) -> Optional[StoredArticle]:
        return self.article(issue.imprint_id)

    def bookmarked_articles(self) -> list[StoredArticle]:
        rows = self._db.query(_ARTICLE_SELECT + " WHERE a.has_bookmark = 1 ORDER BY a.id")
        return [article_from_row(r) for r in rows]

    def authors(self, article: StoredArticle) -> list[StoredAuthor]:
        rows = self._db.query("""
            SELECT au.* FROM authors au
            JOIN article_authors aa ON aa.author_id = au.id
            WHERE aa.article_id = ?
            ORDER BY aa.position
        """, (article.id,))
        return [author_from_row(r) for r in rows]

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def _image(self, row) -> StoredImage:
        return image_from_row(row, self._blobs.get(row["file_id"]))

    def image(self, image_id: Optional[int]) -> Optional[StoredImage]:
        if image_id is None:
            return None
        row = self._db.query_one("SELECT * FROM images WHERE id = ?", (image_id,))
        return self._image(row) if row else None

    def _linked_images(self, table: str, owner_col: str, owner_id: int,
                       kind: Optional[str] = None) -> list[StoredImage]:
        sql = f"""
            SELECT i.* FROM images i
            JOIN {table} l ON l.image_id = i.id
            WHERE l.{owner_col} = ?
        """
        params: tuple = (owner_id,)
        if kind is not None:
            sql += " AND l.kind = ?"
            params += (kind,)
        sql += " ORDER BY l.position"
        return [self._image(r) for r in self._db.query(sql, params)]

    def images(self, article: StoredArticle) -> list[StoredImage]:
        return self._linked_images("article_images", "article_id", article.id)

    def section_images(self, section: StoredSection) -> list[StoredImage]:
        return self._linked_images("section_images", "section_id", section.id)

    # -------------------------------------------------------------------------
    # Pages and frames
    # -------------------------------------------------------------------------

    def page(self, page_id: Optional[int]) -> Optional[StoredPage]:
        if page_id is None:
            return None
        row = self._db.query_one(_PAGE_SELECT + " WHERE p.id = ?", (page_id,))
        return page_from_row(row) if row else None

    def pages(self, issue: StoredIssue) -> list[StoredPage]:
        rows = self._db.query(
            _PAGE_SELECT + " WHERE p.issue_id = ? ORDER BY p.position", (issue.id,)
        )
        return [page_from_row(r) for r in rows]

    def frames(self, page: StoredPage) -> list[StoredFrame]:
        rows = self._db.query(
            "SELECT * FROM frames WHERE page_id = ? ORDER BY position", (page.id,)
        )
        return [frame_from_row(r) for r in rows]

    def article_for_frame(self, frame: StoredFrame) -> Optional[StoredArticle]:
        return self.article(frame.article_id)

    # -------------------------------------------------------------------------
    # Moment
    # -------------------------------------------------------------------------

    def moment(self, issue: StoredIssue) -> Optional[StoredMoment]:
        row = self._db.query_one("SELECT * FROM moments WHERE issue_id = ?", (issue.id,))
        return moment_from_row(row) if row else None

    def moment_images(self, moment: StoredMoment) -> list[StoredImage]:
        return self._linked_images("moment_images", "moment_id", moment.id, kind="image")

    def moment_credited_images(self, moment: StoredMoment) -> list[StoredImage]:
        return self._linked_images("moment_images", "moment_id", moment.id, kind="credit")

    def moment_animation(self, moment: StoredMoment) -> list[StoredFileEntry]:
        rows = self._db.query("""
            SELECT f.* FROM file_entries f
            JOIN moment_animation ma ON ma.file_id = f.id
            WHERE ma.moment_id = ?
            ORDER BY ma.position
        """, (moment.id,))
        return [file_from_row(r) for r in rows]

    # -------------------------------------------------------------------------
    # Payloads and resources
    # -------------------------------------------------------------------------

    def payload(self, issue: StoredIssue) -> Optional[StoredPayload]:
        row = self._db.query_one("SELECT * FROM payloads WHERE issue_id = ?", (issue.id,))
        return payload_from_row(row) if row else None

    def payload_by_id(self, payload_id: int) -> Optional[StoredPayload]:
        row = self._db.query_one("SELECT * FROM payloads WHERE id = ?", (payload_id,))
        return payload_from_row(row) if row else None

    def resources_payload(self, resources: StoredResources) -> Optional[StoredPayload]:
        row = self._db.query_one(
            "SELECT * FROM payloads WHERE resources_id = ?", (resources.id,)
        )
        return payload_from_row(row) if row else None

    def payload_files(self, payload: StoredPayload) -> list[StoredFileEntry]:
        rows = self._db.query("""
            SELECT f.* FROM file_entries f
            JOIN payload_files pf ON pf.file_id = f.id
            WHERE pf.payload_id = ?
            ORDER BY pf.position
        """, (payload.id,))
        return [file_from_row(r) for r in rows]

    def resources(self, version: int) -> Optional[StoredResources]:
        row = self._db.query_one(
            "SELECT * FROM resources WHERE resource_version = ?", (version,)
        )
        return resources_from_row(row) if row else None

    def latest_resources(self) -> Optional[StoredResources]:
        row = self._db.query_one(
            "SELECT * FROM resources ORDER BY resource_version DESC LIMIT 1"
        )
        return resources_from_row(row) if row else None

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        """Row counts of the main entity tables."""
        tables = ("feeders", "feeds", "issues", "sections", "articles", "authors",
                  "pages", "frames", "images", "file_entries", "resources")
        return {t: self._db.scalar(f"SELECT COUNT(*) FROM {t}") for t in tables}
