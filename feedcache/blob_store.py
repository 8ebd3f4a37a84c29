"""
Content-addressed blob store.

Every physical file of the cache is described by one FileEntry record: its
name (unique), storage subdirectory, storage type, declared size, stored
size and SHA-256 checksum. Files are shared by reference: several payloads
may list the same entry, and articles, sections, pages and images point at
entries they render. The physical file is removed only when the last owner
lets go, and only after the deletion has been committed.
"""

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .database import Database
from .records import StoredFileEntry, file_from_row
from .types import FileEntry, StorageType, format_timestamp

logger = logging.getLogger(__name__)

# Subdirectory shared by all files of storage type GLOBAL
GLOBAL_SUBDIR = "global"

_READ_CHUNK = 1 << 16

# Columns in other tables that point at a file entry
_FILE_REFERENCES = (
    ("articles", "html_id"),
    ("articles", "audio_id"),
    ("sections", "html_id"),
    ("pages", "pdf_id"),
    ("images", "file_id"),
    ("moment_animation", "file_id"),
)


def file_sha256(path: Path) -> str:
    """SHA-256 of a file's content, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def subdir_for(storage_type: StorageType, local_dir: str) -> str:
    """Storage subdirectory for a payload member."""
    if storage_type == StorageType.GLOBAL:
        return GLOBAL_SUBDIR
    return local_dir


class BlobStore:
    """
    File entry bookkeeping on top of the entity database.

    All paths are relative to the files root. No file is copied or moved;
    the downloader is expected to place files at subdir/name.
    """

    def __init__(self, db: Database, files_root: Path):
        """
        Args:
            db: Shared entity database
            files_root: Directory holding all blob files
        """
        self._db = db
        self._root = files_root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, file_id: Optional[int]) -> Optional[StoredFileEntry]:
        if file_id is None:
            return None
        row = self._db.query_one("SELECT * FROM file_entries WHERE id = ?", (file_id,))
        return file_from_row(row) if row else None

    def get_by_name(self, name: str) -> Optional[StoredFileEntry]:
        row = self._db.query_one("SELECT * FROM file_entries WHERE name = ?", (name,))
        return file_from_row(row) if row else None

    def find(self, sha256: str) -> Optional[StoredFileEntry]:
        """First entry with the given checksum, if any."""
        entries = self.find_all(sha256)
        return entries[0] if entries else None

    def find_all(self, sha256: str) -> list[StoredFileEntry]:
        if not sha256:
            return []
        rows = self._db.query(
            "SELECT * FROM file_entries WHERE sha256 = ? ORDER BY id", (sha256,)
        )
        return [file_from_row(row) for row in rows]

    def path_of(self, entry: StoredFileEntry) -> Optional[Path]:
        """Absolute path of an entry, None if its subdirectory is unknown."""
        if entry.subdir is None:
            return None
        return self._root / entry.subdir / entry.name

    def resolve(self, name: str) -> Optional[Path]:
        """Absolute path for a file name, None if the entry is unknown."""
        entry = self.get_by_name(name)
        return self.path_of(entry) if entry else None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def put(self, local_path: Path, storage_type: StorageType = StorageType.ISSUE
            ) -> Optional[StoredFileEntry]:
        """
        Register an existing file under the files root.

        Computes checksum and size and records them under the file's name.
        A missing file or a path outside the root yields None.
        """
        local_path = Path(local_path)
        try:
            relative = local_path.resolve().relative_to(self._root.resolve())
        except ValueError:
            logger.warning("Not under files root, not registered: %s", local_path)
            return None
        try:
            stat = local_path.stat()
            sha256 = file_sha256(local_path)
        except OSError as e:
            logger.warning("Cannot register %s: %s", local_path, e)
            return None

        subdir = relative.parent.as_posix()
        if subdir == ".":
            subdir = ""
        mo_time = datetime.fromtimestamp(stat.st_mtime, timezone.utc)
        snapshot = FileEntry(
            name=local_path.name,
            storage_type=storage_type,
            mo_time=mo_time,
            size=stat.st_size,
            sha256=sha256,
        )
        entry = self.register(snapshot, subdir)
        self._db.write(
            "UPDATE file_entries SET stored_size = ? WHERE id = ?",
            (stat.st_size, entry.id),
        )
        entry.stored_size = stat.st_size
        return entry

    def register(self, snapshot: FileEntry, subdir: Optional[str] = None) -> StoredFileEntry:
        """
        Create or update the entry named like snapshot.

        The stored size survives an update only if the checksum is
        unchanged; new content invalidates what is on disk. A None subdir
        keeps the current one.
        """
        existing = self.get_by_name(snapshot.name)
        mo_time = format_timestamp(snapshot.mo_time)
        if existing is None:
            file_id = self._db.insert("""
                INSERT INTO file_entries
                (name, subdir, storage_type, mo_time, size, stored_size, sha256)
                VALUES (?, ?, ?, ?, ?, 0, ?)
            """, (snapshot.name, subdir, snapshot.storage_type.value, mo_time,
                  snapshot.size, snapshot.sha256))
            logger.debug("Registered file %s", snapshot.name)
        else:
            file_id = existing.id
            changed = existing.sha256 != snapshot.sha256
            stored_size = 0 if changed else existing.stored_size
            self._db.write("""
                UPDATE file_entries
                SET subdir = ?, storage_type = ?, mo_time = ?, size = ?,
                    stored_size = ?, sha256 = ?
                WHERE id = ?
            """, (subdir if subdir is not None else existing.subdir,
                  snapshot.storage_type.value, mo_time, snapshot.size,
                  stored_size, snapshot.sha256, file_id))
        return self.get(file_id)

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def owner_count(self, entry: StoredFileEntry) -> int:
        """Number of payloads listing this entry."""
        return self._db.scalar(
            "SELECT COUNT(*) FROM payload_files WHERE file_id = ?", (entry.id,)
        )

    def reference_count(self, entry: StoredFileEntry) -> int:
        """Number of entity references (articles, pages, images, ...)."""
        total = 0
        for table, column in _FILE_REFERENCES:
            total += self._db.scalar(
                f"SELECT COUNT(*) FROM {table} WHERE {column} = ?", (entry.id,)
            )
        return total

    def release(self, entry: Optional[StoredFileEntry]) -> bool:
        """Delete entry if no payload and no entity refers to it any more."""
        if entry is None:
            return False
        if self.owner_count(entry) or self.reference_count(entry):
            return False
        return self.delete(entry)

    def delete(self, entry: StoredFileEntry) -> bool:
        """
        Drop an entry no payload owns and remove its file after commit.

        Entity references to the entry are cleared by the database
        (images built on it go with it); use release() to keep referenced
        entries. Returns False and leaves owned entries alone.
        """
        if self.owner_count(entry):
            logger.debug("Not deleting owned file entry %s", entry.name)
            return False
        path = self.path_of(entry)
        self._db.write("DELETE FROM file_entries WHERE id = ?", (entry.id,))
        logger.debug("Deleted file entry %s", entry.name)
        if path is not None:
            self._db.on_commit(lambda: self._remove_file(path, entry.name))
        return True

    def _remove_file(self, path: Path, name: str) -> None:
        # An entry with the same name may have been registered again since
        if self.get_by_name(name) is not None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove %s: %s", path, e)

    # -------------------------------------------------------------------------
    # Stored size
    # -------------------------------------------------------------------------

    def stored_size(self, entry: StoredFileEntry) -> int:
        """
        Locally stored size of the entry.

        A zero stored size is refreshed from disk. Missing files count as
        zero; other stat failures are logged and count as zero too.
        """
        if entry.stored_size > 0:
            return entry.stored_size
        path = self.path_of(entry)
        if path is None:
            return 0
        try:
            size = os.path.getsize(path)
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return 0
        self._db.write(
            "UPDATE file_entries SET stored_size = ? WHERE id = ?", (size, entry.id)
        )
        entry.stored_size = size
        return size

    def is_stored(self, entry: StoredFileEntry) -> bool:
        """True if the file is on disk with at least its declared size.

        Files not yet confirmed (stored size zero) are checked against the
        entry's checksum before they count as stored.
        """
        path = self.path_of(entry)
        if path is None or not path.exists():
            return False
        if entry.stored_size <= 0 and entry.sha256:
            try:
                if file_sha256(path) != entry.sha256:
                    return False
            except OSError as e:
                logger.warning("Cannot verify %s: %s", path, e)
                return False
        return self.stored_size(entry) >= entry.size

    def total_stored_bytes(self) -> int:
        return self._db.scalar("SELECT COALESCE(SUM(stored_size), 0) FROM file_entries")
