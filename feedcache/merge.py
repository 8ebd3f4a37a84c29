"""
Merge engine: reconcile stored records with a fresh feed snapshot.

Every merge_* method is idempotent. Scalar fields take the snapshot's
values, child collections end up equal to the snapshot's children by their
uniqueness key (file name, date, version, frame rectangle), and ordered
collections are renumbered 0..n-1 in snapshot order. Children that vanished
from the snapshot are detached and deleted; the file entries they held are
released through the blob store, which removes a file only when nobody
refers to it any more.

Reader state (bookmarks, reading positions, completeness flags, download
timestamps) is local and survives a merge.
"""

import logging
import sqlite3
from typing import Optional

from .blob_store import BlobStore, subdir_for
from .database import Database
from .errors import IntegrityError, MergeReport
from .types import (
    FRAME_EPSILON,
    Article,
    Author,
    Feed,
    Feeder,
    FileEntry,
    Frame,
    Image,
    Issue,
    Moment,
    Page,
    Payload,
    Resources,
    Section,
    format_date,
    format_timestamp,
)

logger = logging.getLogger(__name__)


def _unique(ids: list[int]) -> list[int]:
    """Drop repeated IDs, keeping first occurrence order."""
    return list(dict.fromkeys(ids))


class Merger:
    """
    Per-entity update-from-snapshot procedures.

    The merger never commits. Callers wrap merges in Database.transaction()
    and flush with Database.save().
    """

    def __init__(self, db: Database, blobs: BlobStore):
        self._db = db
        self._blobs = blobs

    # -------------------------------------------------------------------------
    # Link tables
    # -------------------------------------------------------------------------

    def _sync_links(
        self,
        table: str,
        owner_col: str,
        owner_id: int,
        child_col: str,
        child_ids: list[int],
        kind: Optional[str] = None,
    ) -> list[int]:
        """
        Make the owner's links equal to child_ids, positioned in list order.

        Returns:
            IDs of children that were linked before and are not any more
        """
        where = f"{owner_col} = ?"
        params: tuple = (owner_id,)
        if kind is not None:
            where += " AND kind = ?"
            params += (kind,)
        old = [row[0] for row in self._db.query(
            f"SELECT {child_col} FROM {table} WHERE {where}", params
        )]
        child_ids = _unique(child_ids)
        removed = [c for c in old if c not in child_ids]
        for child_id in removed:
            self._db.write(
                f"DELETE FROM {table} WHERE {where} AND {child_col} = ?",
                params + (child_id,),
            )
        for position, child_id in enumerate(child_ids):
            if child_id in old:
                self._db.write(
                    f"UPDATE {table} SET position = ? WHERE {where} AND {child_col} = ?",
                    (position,) + params + (child_id,),
                )
            elif kind is None:
                self._db.write(
                    f"INSERT INTO {table} ({owner_col}, {child_col}, position) VALUES (?, ?, ?)",
                    (owner_id, child_id, position),
                )
            else:
                self._db.write(
                    f"INSERT INTO {table} ({owner_col}, {child_col}, kind, position) "
                    f"VALUES (?, ?, ?, ?)",
                    (owner_id, child_id, kind, position),
                )
        return removed

    def _release_file_id(self, file_id: Optional[int]) -> None:
        self._blobs.release(self._blobs.get(file_id))

    # -------------------------------------------------------------------------
    # Images and authors
    # -------------------------------------------------------------------------

    def merge_image(self, snapshot: Image) -> int:
        """Create or update the image on the file named like snapshot."""
        entry = self._blobs.register(snapshot)
        alpha = 1.0 if snapshot.alpha is None else snapshot.alpha
        image_id = self._db.scalar("SELECT id FROM images WHERE file_id = ?", (entry.id,))
        if image_id is None:
            return self._db.insert("""
                INSERT INTO images (file_id, resolution, type, alpha, sharable)
                VALUES (?, ?, ?, ?, ?)
            """, (entry.id, snapshot.resolution.value, snapshot.type.value,
                  alpha, int(snapshot.sharable)))
        self._db.write("""
            UPDATE images SET resolution = ?, type = ?, alpha = ?, sharable = ?
            WHERE id = ?
        """, (snapshot.resolution.value, snapshot.type.value, alpha,
              int(snapshot.sharable), image_id))
        return image_id

    def release_image(self, image_id: Optional[int]) -> None:
        """Delete an image (and its file, if unowned) once nothing shows it."""
        if image_id is None:
            return
        refs = self._db.scalar("""
            SELECT (SELECT COUNT(*) FROM section_images WHERE image_id = :id)
                 + (SELECT COUNT(*) FROM article_images WHERE image_id = :id)
                 + (SELECT COUNT(*) FROM moment_images WHERE image_id = :id)
                 + (SELECT COUNT(*) FROM authors WHERE photo_id = :id)
                 + (SELECT COUNT(*) FROM pages WHERE facsimile_id = :id)
                 + (SELECT COUNT(*) FROM sections WHERE nav_button_id = :id)
        """, {"id": image_id})
        if refs:
            return
        file_id = self._db.scalar("SELECT file_id FROM images WHERE id = ?", (image_id,))
        self._db.write("DELETE FROM images WHERE id = ?", (image_id,))
        self._release_file_id(file_id)

    def _find_author(self, snapshot: Author) -> Optional[int]:
        if snapshot.name:
            return self._db.scalar(
                "SELECT id FROM authors WHERE name = ? ORDER BY id LIMIT 1",
                (snapshot.name,),
            )
        if snapshot.photo is not None:
            return self._db.scalar("""
                SELECT a.id FROM authors a
                JOIN images i ON a.photo_id = i.id
                JOIN file_entries f ON i.file_id = f.id
                WHERE f.name = ?
                ORDER BY a.id LIMIT 1
            """, (snapshot.photo.name,))
        return None

    def merge_author(self, snapshot: Author) -> int:
        if snapshot.key is None:
            raise IntegrityError("Author", "?", "neither name nor photo")
        photo_id = self.merge_image(snapshot.photo) if snapshot.photo else None
        author_id = self._find_author(snapshot)
        if author_id is None:
            return self._db.insert(
                "INSERT INTO authors (name, photo_id) VALUES (?, ?)",
                (snapshot.name, photo_id),
            )
        old_photo = self._db.scalar("SELECT photo_id FROM authors WHERE id = ?", (author_id,))
        self._db.write(
            "UPDATE authors SET name = ?, photo_id = ? WHERE id = ?",
            (snapshot.name, photo_id, author_id),
        )
        if old_photo is not None and old_photo != photo_id:
            self.release_image(old_photo)
        return author_id

    def release_author(self, author_id: int) -> None:
        """Delete an author who no longer writes any stored article."""
        if self._db.scalar(
            "SELECT COUNT(*) FROM article_authors WHERE author_id = ?", (author_id,)
        ):
            return
        photo_id = self._db.scalar("SELECT photo_id FROM authors WHERE id = ?", (author_id,))
        self._db.write("DELETE FROM authors WHERE id = ?", (author_id,))
        self.release_image(photo_id)

    # -------------------------------------------------------------------------
    # Articles
    # -------------------------------------------------------------------------

    def _article_by_html(self, name: str) -> Optional[int]:
        return self._db.scalar("""
            SELECT a.id FROM articles a
            JOIN file_entries f ON a.html_id = f.id
            WHERE f.name = ?
        """, (name,))

    def merge_article(self, snapshot: Article) -> int:
        if snapshot.html is None or not snapshot.html.name:
            raise IntegrityError("Article", snapshot.title or "?", "missing HTML file")
        html = self._blobs.register(snapshot.html)
        audio = self._blobs.register(snapshot.audio) if snapshot.audio else None
        audio_id = audio.id if audio else None

        article_id = self._db.scalar("SELECT id FROM articles WHERE html_id = ?", (html.id,))
        if article_id is None:
            article_id = self._db.insert("""
                INSERT INTO articles
                (html_id, audio_id, title, teaser, online_link, has_bookmark)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (html.id, audio_id, snapshot.title, snapshot.teaser,
                  snapshot.online_link, int(snapshot.has_bookmark)))
            old_audio = None
        else:
            old_audio = self._db.scalar("SELECT audio_id FROM articles WHERE id = ?", (article_id,))
            self._db.write("""
                UPDATE articles
                SET audio_id = ?, title = ?, teaser = ?, online_link = ?
                WHERE id = ?
            """, (audio_id, snapshot.title, snapshot.teaser, snapshot.online_link,
                  article_id))
        if old_audio is not None and old_audio != audio_id:
            self._release_file_id(old_audio)

        image_ids = [self.merge_image(img) for img in snapshot.images]
        for image_id in self._sync_links(
            "article_images", "article_id", article_id, "image_id", image_ids
        ):
            self.release_image(image_id)

        author_ids = [self.merge_author(au) for au in snapshot.authors]
        for author_id in self._sync_links(
            "article_authors", "article_id", article_id, "author_id", author_ids
        ):
            self.release_author(author_id)
        return article_id

    def delete_article(self, article_id: int) -> None:
        """Delete an article with its files, images and orphaned authors."""
        row = self._db.query_one(
            "SELECT html_id, audio_id FROM articles WHERE id = ?", (article_id,)
        )
        if row is None:
            return
        image_ids = [r[0] for r in self._db.query(
            "SELECT image_id FROM article_images WHERE article_id = ?", (article_id,)
        )]
        author_ids = [r[0] for r in self._db.query(
            "SELECT author_id FROM article_authors WHERE article_id = ?", (article_id,)
        )]
        self._db.write("DELETE FROM articles WHERE id = ?", (article_id,))
        logger.debug("Deleted article %d", article_id)
        self._release_file_id(row["html_id"])
        self._release_file_id(row["audio_id"])
        for image_id in image_ids:
            self.release_image(image_id)
        for author_id in author_ids:
            self.release_author(author_id)

    def release_article(self, article_id: Optional[int]) -> None:
        """Delete an article that is in no section and no imprint."""
        if article_id is None:
            return
        refs = self._db.scalar("""
            SELECT (SELECT COUNT(*) FROM section_articles WHERE article_id = :id)
                 + (SELECT COUNT(*) FROM issues WHERE imprint_id = :id)
        """, {"id": article_id})
        if not refs:
            self.delete_article(article_id)

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def merge_section(self, issue_id: int, snapshot: Section, position: int = 0) -> int:
        if snapshot.html is None or not snapshot.html.name:
            raise IntegrityError("Section", snapshot.name or "?", "missing HTML file")
        html = self._blobs.register(snapshot.html)
        nav_id = self.merge_image(snapshot.nav_button) if snapshot.nav_button else None

        row = self._db.query_one(
            "SELECT id, issue_id, nav_button_id FROM sections WHERE html_id = ?", (html.id,)
        )
        if row is None:
            section_id = self._db.insert("""
                INSERT INTO sections
                (issue_id, html_id, name, extended_title, type, nav_button_id, position)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (issue_id, html.id, snapshot.name, snapshot.extended_title,
                  snapshot.type.value, nav_id, position))
            old_nav = None
        else:
            if row["issue_id"] != issue_id:
                raise IntegrityError(
                    "Section", snapshot.html.name, "HTML file belongs to another issue"
                )
            section_id = row["id"]
            old_nav = row["nav_button_id"]
            self._db.write("""
                UPDATE sections
                SET name = ?, extended_title = ?, type = ?, nav_button_id = ?, position = ?
                WHERE id = ?
            """, (snapshot.name, snapshot.extended_title, snapshot.type.value,
                  nav_id, position, section_id))
        if old_nav is not None and old_nav != nav_id:
            self.release_image(old_nav)

        image_ids = [self.merge_image(img) for img in snapshot.images]
        for image_id in self._sync_links(
            "section_images", "section_id", section_id, "image_id", image_ids
        ):
            self.release_image(image_id)

        article_ids = [self.merge_article(art) for art in snapshot.articles]
        for article_id in self._sync_links(
            "section_articles", "section_id", section_id, "article_id", article_ids
        ):
            self.release_article(article_id)
        return section_id

    def delete_section(self, section_id: int) -> None:
        """Delete a section, cascading to articles no other section holds."""
        row = self._db.query_one(
            "SELECT html_id, nav_button_id FROM sections WHERE id = ?", (section_id,)
        )
        if row is None:
            return
        image_ids = [r[0] for r in self._db.query(
            "SELECT image_id FROM section_images WHERE section_id = ?", (section_id,)
        )]
        article_ids = [r[0] for r in self._db.query(
            "SELECT article_id FROM section_articles WHERE section_id = ? ORDER BY position",
            (section_id,),
        )]
        self._db.write("DELETE FROM sections WHERE id = ?", (section_id,))
        logger.debug("Deleted section %d", section_id)
        for article_id in article_ids:
            self.release_article(article_id)
        self._release_file_id(row["html_id"])
        self.release_image(row["nav_button_id"])
        for image_id in image_ids:
            self.release_image(image_id)

    # -------------------------------------------------------------------------
    # Pages and frames
    # -------------------------------------------------------------------------

    def merge_page(self, issue_id: int, snapshot: Page, position: int = 0) -> int:
        if snapshot.pdf is None or not snapshot.pdf.name:
            raise IntegrityError("Page", snapshot.pagina or "?", "missing PDF file")
        pdf = self._blobs.register(snapshot.pdf)
        row = self._db.query_one(
            "SELECT id, issue_id, facsimile_id FROM pages WHERE pdf_id = ?", (pdf.id,)
        )
        if row is None:
            page_id = self._db.insert("""
                INSERT INTO pages (issue_id, pdf_id, title, pagina, type, position)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (issue_id, pdf.id, snapshot.title, snapshot.pagina,
                  snapshot.type.value, position))
            old_facsimile = None
        else:
            if row["issue_id"] != issue_id:
                raise IntegrityError(
                    "Page", snapshot.pdf.name, "PDF file belongs to another issue"
                )
            page_id = row["id"]
            old_facsimile = row["facsimile_id"]
            self._db.write("""
                UPDATE pages SET title = ?, pagina = ?, type = ?, position = ?
                WHERE id = ?
            """, (snapshot.title, snapshot.pagina, snapshot.type.value, position, page_id))

        # A derived facsimile is kept unless the snapshot brings its own
        if snapshot.facsimile is not None:
            facsimile_id = self.merge_image(snapshot.facsimile)
            self._db.write(
                "UPDATE pages SET facsimile_id = ? WHERE id = ?", (facsimile_id, page_id)
            )
            if old_facsimile is not None and old_facsimile != facsimile_id:
                self.release_image(old_facsimile)

        self.merge_frames(page_id, snapshot.frames)
        return page_id

    def merge_frames(self, page_id: int, snapshots: list[Frame]) -> None:
        """
        Reconcile a page's frames by rectangle.

        Each snapshot frame claims the nearest unclaimed stored frame of
        the same page whose coordinates all lie within FRAME_EPSILON.
        Links are resolved against the current article HTML names.
        """
        existing = {row["id"]: row for row in self._db.query(
            "SELECT id, x1, y1, x2, y2 FROM frames WHERE page_id = ?", (page_id,)
        )}
        claimed: set[int] = set()
        for position, frame in enumerate(snapshots):
            best_id, best_dist = None, None
            for frame_id, row in existing.items():
                if frame_id in claimed:
                    continue
                if not frame.matches(row["x1"], row["y1"], row["x2"], row["y2"],
                                     FRAME_EPSILON):
                    continue
                dist = max(abs(frame.x1 - row["x1"]), abs(frame.y1 - row["y1"]),
                           abs(frame.x2 - row["x2"]), abs(frame.y2 - row["y2"]))
                if best_dist is None or dist < best_dist:
                    best_id, best_dist = frame_id, dist
            article_id = self._article_by_html(frame.link) if frame.link else None
            if frame.link and article_id is None:
                logger.debug("Frame link %s does not resolve", frame.link)
            if best_id is None:
                best_id = self._db.insert("""
                    INSERT INTO frames (page_id, x1, y1, x2, y2, link, article_id, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (page_id, frame.x1, frame.y1, frame.x2, frame.y2, frame.link,
                      article_id, position))
            else:
                self._db.write("""
                    UPDATE frames
                    SET x1 = ?, y1 = ?, x2 = ?, y2 = ?, link = ?, article_id = ?, position = ?
                    WHERE id = ?
                """, (frame.x1, frame.y1, frame.x2, frame.y2, frame.link, article_id,
                      position, best_id))
            claimed.add(best_id)
        for frame_id in existing:
            if frame_id not in claimed:
                self._db.write("DELETE FROM frames WHERE id = ?", (frame_id,))

    def delete_page(self, page_id: int) -> None:
        row = self._db.query_one(
            "SELECT pdf_id, facsimile_id FROM pages WHERE id = ?", (page_id,)
        )
        if row is None:
            return
        self._db.write("DELETE FROM pages WHERE id = ?", (page_id,))
        logger.debug("Deleted page %d", page_id)
        self.release_image(row["facsimile_id"])
        self._release_file_id(row["pdf_id"])

    # -------------------------------------------------------------------------
    # Moment
    # -------------------------------------------------------------------------

    def merge_moment(self, issue_id: int, snapshot: Moment) -> int:
        moment_id = self._db.scalar("SELECT id FROM moments WHERE issue_id = ?", (issue_id,))
        if moment_id is None:
            moment_id = self._db.insert(
                "INSERT INTO moments (issue_id, data) VALUES (?, ?)",
                (issue_id, snapshot.data),
            )
        elif snapshot.data is not None:
            self._db.write("UPDATE moments SET data = ? WHERE id = ?", (snapshot.data, moment_id))

        for kind, images in (("image", snapshot.images), ("credit", snapshot.credited_images)):
            image_ids = [self.merge_image(img) for img in images]
            for image_id in self._sync_links(
                "moment_images", "moment_id", moment_id, "image_id", image_ids, kind=kind
            ):
                self.release_image(image_id)

        file_ids = [self._blobs.register(f).id for f in snapshot.animation]
        for file_id in self._sync_links(
            "moment_animation", "moment_id", moment_id, "file_id", file_ids
        ):
            self._release_file_id(file_id)
        return moment_id

    # -------------------------------------------------------------------------
    # Payloads and resources
    # -------------------------------------------------------------------------

    def merge_payload(self, owner_col: str, owner_id: int, snapshot: Payload) -> int:
        """
        Reconcile the payload owned by an issue or resources bundle.

        Progress is reset: bytes_loaded goes to 0 and bytes_total is the sum
        of the declared member sizes. Download timestamps are kept.
        """
        if owner_col not in ("issue_id", "resources_id"):
            raise ValueError(f"Unknown payload owner: {owner_col}")
        members: dict[str, FileEntry] = {}
        for f in snapshot.files:
            members.setdefault(f.name, f)
        bytes_total = sum(f.size for f in members.values())

        payload_id = self._db.scalar(
            f"SELECT id FROM payloads WHERE {owner_col} = ?", (owner_id,)
        )
        if payload_id is None:
            payload_id = self._db.insert(f"""
                INSERT INTO payloads
                ({owner_col}, local_dir, remote_base_url, remote_zip_name,
                 bytes_loaded, bytes_total)
                VALUES (?, ?, ?, ?, 0, ?)
            """, (owner_id, snapshot.local_dir, snapshot.remote_base_url,
                  snapshot.remote_zip_name, bytes_total))
        else:
            self._db.write("""
                UPDATE payloads
                SET local_dir = ?, remote_base_url = ?, remote_zip_name = ?,
                    bytes_loaded = 0, bytes_total = ?
                WHERE id = ?
            """, (snapshot.local_dir, snapshot.remote_base_url, snapshot.remote_zip_name,
                  bytes_total, payload_id))

        old_ids = {r[0] for r in self._db.query(
            "SELECT file_id FROM payload_files WHERE payload_id = ?", (payload_id,)
        )}
        file_ids = [
            self._blobs.register(f, subdir_for(f.storage_type, snapshot.local_dir)).id
            for f in members.values()
        ]
        for file_id in self._sync_links(
            "payload_files", "payload_id", payload_id, "file_id", file_ids
        ):
            self._release_file_id(file_id)
        # A changed member set needs another download
        if owner_col == "issue_id" and old_ids != set(file_ids):
            self._db.write("UPDATE issues SET is_complete = 0 WHERE id = ?", (owner_id,))
        return payload_id

    def delete_payload(self, payload_id: int) -> None:
        """Delete a payload; member files go with it unless owned elsewhere."""
        file_ids = [r[0] for r in self._db.query(
            "SELECT file_id FROM payload_files WHERE payload_id = ?", (payload_id,)
        )]
        self._db.write("DELETE FROM payloads WHERE id = ?", (payload_id,))
        for file_id in file_ids:
            self._release_file_id(file_id)

    def merge_resources(self, snapshot: Resources) -> int:
        resources_id = self._db.scalar(
            "SELECT id FROM resources WHERE resource_version = ?",
            (snapshot.resource_version,),
        )
        if resources_id is None:
            resources_id = self._db.insert(
                "INSERT INTO resources (resource_version) VALUES (?)",
                (snapshot.resource_version,),
            )
        self.merge_payload("resources_id", resources_id, snapshot.payload)
        return resources_id

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    def merge_issue(self, feed_id: int, snapshot: Issue) -> int:
        """
        Merge one issue into a feed.

        Sections and their articles are merged before pages so that frame
        links resolve. Sections and pages missing from the snapshot are
        deleted afterwards. The moment's first page is set last.
        """
        if snapshot.date is None:
            raise IntegrityError("Issue", "?", "missing date")
        issue_date = format_date(snapshot.date)
        mo_time = format_timestamp(snapshot.mo_time)
        row = self._db.query_one(
            "SELECT id, mo_time, imprint_id FROM issues WHERE feed_id = ? AND date = ?",
            (feed_id, issue_date),
        )
        scalars = (mo_time, int(snapshot.is_weekend), snapshot.key, snapshot.base_url,
                   snapshot.status.value, snapshot.min_resource_version,
                   snapshot.zip_name, snapshot.zip_name_pdf)
        if row is None:
            issue_id = self._db.insert("""
                INSERT INTO issues
                (mo_time, is_weekend, key, base_url, status, min_resource_version,
                 zip_name, zip_name_pdf, feed_id, date)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, scalars + (feed_id, issue_date))
            old_imprint = None
        else:
            issue_id = row["id"]
            old_imprint = row["imprint_id"]
            self._db.write("""
                UPDATE issues
                SET mo_time = ?, is_weekend = ?, key = ?, base_url = ?, status = ?,
                    min_resource_version = ?, zip_name = ?, zip_name_pdf = ?
                WHERE id = ?
            """, scalars + (issue_id,))
            if row["mo_time"] != mo_time:
                # New content on the server: the local copy needs a download again
                self._db.write("UPDATE issues SET is_complete = 0 WHERE id = ?", (issue_id,))

        moment_id = self.merge_moment(issue_id, snapshot.moment)

        section_ids = _unique([
            self.merge_section(issue_id, section, position)
            for position, section in enumerate(snapshot.sections)
        ])

        imprint_id = self.merge_article(snapshot.imprint) if snapshot.imprint else None
        self._db.write("UPDATE issues SET imprint_id = ? WHERE id = ?", (imprint_id, issue_id))
        if old_imprint is not None and old_imprint != imprint_id:
            self.release_article(old_imprint)

        page_ids = _unique([
            self.merge_page(issue_id, page, position)
            for position, page in enumerate(snapshot.pages)
        ])

        for row in self._db.query("SELECT id FROM sections WHERE issue_id = ?", (issue_id,)):
            if row["id"] not in section_ids:
                self.delete_section(row["id"])
        for row in self._db.query("SELECT id FROM pages WHERE issue_id = ?", (issue_id,)):
            if row["id"] not in page_ids:
                self.delete_page(row["id"])

        if snapshot.payload is not None:
            self.merge_payload("issue_id", issue_id, snapshot.payload)

        first_page = self._db.scalar(
            "SELECT id FROM pages WHERE issue_id = ? ORDER BY position LIMIT 1", (issue_id,)
        )
        self._db.write(
            "UPDATE moments SET first_page_id = ? WHERE id = ?", (first_page, moment_id)
        )
        logger.debug("Merged issue %s (%d sections, %d pages)",
                     issue_date, len(section_ids), len(page_ids))
        return issue_id

    def merge_issue_isolated(self, feed_id: int, snapshot: Issue,
                             report: MergeReport) -> Optional[int]:
        """Merge an issue in its own savepoint; failures go to the report."""
        key = format_date(snapshot.date) or "?"
        try:
            with self._db.transaction():
                issue_id = self.merge_issue(feed_id, snapshot)
        except IntegrityError as e:
            logger.warning("Issue %s not merged: %s", key, e)
            report.add(e)
            return None
        except sqlite3.IntegrityError as e:
            logger.warning("Issue %s not merged: %s", key, e)
            report.add(IntegrityError("Issue", key, str(e)))
            return None
        report.issues_merged += 1
        return issue_id

    # -------------------------------------------------------------------------
    # Feeds and feeder
    # -------------------------------------------------------------------------

    def merge_feed(self, feeder_id: int, snapshot: Feed,
                   report: Optional[MergeReport] = None) -> int:
        """Merge a feed and its issues. Issues absent from the snapshot stay."""
        report = report if report is not None else MergeReport()
        scalars = (snapshot.cycle.value, snapshot.type.value, snapshot.moment_ratio,
                   snapshot.issue_cnt, format_date(snapshot.first_issue),
                   format_date(snapshot.last_issue),
                   format_timestamp(snapshot.last_issue_read),
                   format_timestamp(snapshot.last_updated))
        feed_id = self._db.scalar(
            "SELECT id FROM feeds WHERE feeder_id = ? AND name = ?",
            (feeder_id, snapshot.name),
        )
        if feed_id is None:
            feed_id = self._db.insert("""
                INSERT INTO feeds
                (cycle, type, moment_ratio, issue_cnt, first_issue, last_issue,
                 last_issue_read, last_updated, feeder_id, name)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, scalars + (feeder_id, snapshot.name))
        else:
            self._db.write("""
                UPDATE feeds
                SET cycle = ?, type = ?, moment_ratio = ?, issue_cnt = ?,
                    first_issue = ?, last_issue = ?, last_issue_read = ?, last_updated = ?
                WHERE id = ?
            """, scalars + (feed_id,))
        for issue in snapshot.issues:
            self.merge_issue_isolated(feed_id, issue, report)
        return feed_id

    def merge_feeder(self, snapshot: Feeder, report: Optional[MergeReport] = None) -> int:
        """Merge the root of a feed query. Feeds absent from it are kept."""
        report = report if report is not None else MergeReport()
        if not snapshot.title:
            raise IntegrityError("Feeder", "?", "missing title")
        scalars = (snapshot.timezone, snapshot.base_url, snapshot.global_base_url,
                   snapshot.resource_base_url, snapshot.auth_token,
                   snapshot.resource_version,
                   format_timestamp(snapshot.last_updated))
        feeder_id = self._db.scalar("SELECT id FROM feeders WHERE title = ?", (snapshot.title,))
        if feeder_id is None:
            feeder_id = self._db.insert("""
                INSERT INTO feeders
                (timezone, base_url, global_base_url, resource_base_url, auth_token,
                 resource_version, last_updated, title)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, scalars + (snapshot.title,))
        else:
            self._db.write("""
                UPDATE feeders
                SET timezone = ?, base_url = ?, global_base_url = ?, resource_base_url = ?,
                    auth_token = ?, resource_version = ?, last_updated = ?
                WHERE id = ?
            """, scalars + (feeder_id,))

        if snapshot.resources is not None:
            try:
                with self._db.transaction():
                    self.merge_resources(snapshot.resources)
            except (IntegrityError, sqlite3.IntegrityError) as e:
                logger.warning("Resources %d not merged: %s",
                               snapshot.resources.resource_version, e)
                report.add(e if isinstance(e, IntegrityError) else IntegrityError(
                    "Resources", str(snapshot.resources.resource_version), str(e)))

        for feed in snapshot.feeds:
            try:
                with self._db.transaction():
                    self.merge_feed(feeder_id, feed, report)
            except sqlite3.IntegrityError as e:
                logger.warning("Feed %s not merged: %s", feed.name, e)
                report.add(IntegrityError("Feed", feed.name, str(e)))
        return feeder_id
