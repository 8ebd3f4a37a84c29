"""
Download bookkeeping for payloads.

The downloader itself lives outside the cache. It reports back here: when a
payload download starts and stops, how many bytes have landed, and when an
issue may be declared complete. Each call is persisted immediately.
"""

import logging

from .blob_store import BlobStore
from .database import Database
from .queries import Queries
from .records import StoredFileEntry, StoredIssue, StoredPayload
from .types import utc_now

logger = logging.getLogger(__name__)


class DownloadBookkeeper:
    """Progress counters, timestamps and completeness of payloads."""

    def __init__(self, db: Database, blobs: BlobStore, queries: Queries):
        self._db = db
        self._blobs = blobs
        self._queries = queries

    def _reload(self, payload: StoredPayload) -> StoredPayload:
        return self._queries.payload_by_id(payload.id)

    def begin_download(self, payload: StoredPayload) -> StoredPayload:
        """Stamp the download start, unless one is already recorded."""
        with self._db.transaction():
            self._db.write(
                "UPDATE payloads SET download_started = ? "
                "WHERE id = ? AND download_started IS NULL",
                (utc_now(), payload.id),
            )
        self._db.save()
        return self._reload(payload)

    def record_progress(self, payload: StoredPayload, delta: int) -> StoredPayload:
        """
        Add delta downloaded bytes.

        The counter never decreases and never exceeds the payload total.

        Raises:
            ValueError: If delta is negative
        """
        if delta < 0:
            raise ValueError(f"Progress delta must not be negative: {delta}")
        with self._db.transaction():
            self._db.write("""
                UPDATE payloads
                SET bytes_loaded = MAX(bytes_loaded, MIN(bytes_total, bytes_loaded + ?))
                WHERE id = ?
            """, (delta, payload.id))
        self._db.save()
        return self._reload(payload)

    def complete_download(self, payload: StoredPayload) -> StoredPayload:
        with self._db.transaction():
            self._db.write(
                "UPDATE payloads SET download_stopped = ? WHERE id = ?",
                (utc_now(), payload.id),
            )
        self._db.save()
        logger.info("Download of %s finished", payload.local_dir)
        return self._reload(payload)

    def is_complete(self, payload: StoredPayload) -> bool:
        current = self._reload(payload)
        return current is not None and current.is_complete

    def progress(self, payload: StoredPayload) -> tuple[int, int]:
        """(bytes loaded, bytes total) of a payload."""
        current = self._reload(payload)
        if current is None:
            return (0, 0)
        return (current.bytes_loaded, current.bytes_total)

    def mark_stored(self, payload: StoredPayload) -> list[StoredFileEntry]:
        """
        Refresh stored sizes of the payload's files from disk.

        Returns:
            Member files that are not (fully) stored yet
        """
        missing = []
        with self._db.transaction():
            for entry in self._queries.payload_files(payload):
                if not self._blobs.is_stored(entry):
                    missing.append(entry)
        self._db.save()
        return missing

    def set_issue_complete(self, issue: StoredIssue) -> bool:
        """
        Mark an issue complete if every payload file is stored.

        Completion implies the overview is complete as well.

        Returns:
            True if the issue was marked complete
        """
        payload = self._queries.payload(issue)
        if payload is None:
            logger.warning("Issue %s has no payload, not complete", issue.date)
            return False
        missing = self.mark_stored(payload)
        if missing:
            logger.info("Issue %s incomplete: %d files missing", issue.date, len(missing))
            return False
        with self._db.transaction():
            self._db.write(
                "UPDATE issues SET is_complete = 1, is_ovw_complete = 1 WHERE id = ?",
                (issue.id,),
            )
            self._db.write(
                "UPDATE payloads SET bytes_loaded = bytes_total WHERE id = ?", (payload.id,)
            )
        self._db.save()
        logger.info("Issue %s complete", issue.date)
        return True
