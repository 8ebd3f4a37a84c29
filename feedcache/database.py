"""
Entity database using SQLite.

Holds every stored record of the cache (feeders down to frames and file
entries) in one embedded database file. The database is the single
persistence context shared by the blob store, the merge engine, the
download bookkeeper and the eviction manager.

Transactions are explicit: writes open a transaction lazily and nothing is
committed until save(). Merge and eviction run inside transaction(), which
holds the connection lock for the whole operation (readers never see a
half-merged graph) and maps nested blocks to savepoints so a failing
subtree can be rolled back on its own.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS file_entries (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    subdir TEXT,
    storage_type TEXT NOT NULL DEFAULT 'issue',
    mo_time TEXT,
    size INTEGER NOT NULL DEFAULT 0,
    stored_size INTEGER NOT NULL DEFAULT 0,
    sha256 TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_file_entries_sha256 ON file_entries(sha256);

CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY,
    file_id INTEGER NOT NULL UNIQUE REFERENCES file_entries(id) ON DELETE CASCADE,
    resolution TEXT NOT NULL DEFAULT 'normal',
    type TEXT NOT NULL DEFAULT 'picture',
    alpha REAL NOT NULL DEFAULT 1.0,
    sharable INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS feeders (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL UNIQUE,
    timezone TEXT NOT NULL DEFAULT '',
    base_url TEXT NOT NULL DEFAULT '',
    global_base_url TEXT NOT NULL DEFAULT '',
    resource_base_url TEXT NOT NULL DEFAULT '',
    auth_token TEXT,
    resource_version INTEGER NOT NULL DEFAULT 0,
    last_updated TEXT
);

CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY,
    feeder_id INTEGER NOT NULL REFERENCES feeders(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    cycle TEXT NOT NULL DEFAULT 'unknown',
    type TEXT NOT NULL DEFAULT 'unknown',
    moment_ratio REAL NOT NULL DEFAULT 0,
    issue_cnt INTEGER NOT NULL DEFAULT 0,
    first_issue TEXT,
    last_issue TEXT,
    last_issue_read TEXT,
    last_updated TEXT,
    UNIQUE (feeder_id, name)
);

CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY,
    html_id INTEGER UNIQUE REFERENCES file_entries(id) ON DELETE SET NULL,
    audio_id INTEGER REFERENCES file_entries(id) ON DELETE SET NULL,
    title TEXT,
    teaser TEXT,
    online_link TEXT,
    has_bookmark INTEGER NOT NULL DEFAULT 0,
    last_position INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_articles_bookmark ON articles(has_bookmark);

CREATE TABLE IF NOT EXISTS issues (
    id INTEGER PRIMARY KEY,
    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    mo_time TEXT,
    is_weekend INTEGER NOT NULL DEFAULT 0,
    key TEXT,
    base_url TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'regular',
    min_resource_version INTEGER NOT NULL DEFAULT 0,
    zip_name TEXT,
    zip_name_pdf TEXT,
    is_complete INTEGER NOT NULL DEFAULT 0,
    is_ovw_complete INTEGER NOT NULL DEFAULT 0,
    last_article INTEGER NOT NULL DEFAULT -1,
    last_section INTEGER NOT NULL DEFAULT -1,
    last_page INTEGER NOT NULL DEFAULT -1,
    imprint_id INTEGER REFERENCES articles(id) ON DELETE SET NULL,
    UNIQUE (feed_id, date)
);

CREATE TABLE IF NOT EXISTS resources (
    id INTEGER PRIMARY KEY,
    resource_version INTEGER NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS payloads (
    id INTEGER PRIMARY KEY,
    issue_id INTEGER UNIQUE REFERENCES issues(id) ON DELETE CASCADE,
    resources_id INTEGER UNIQUE REFERENCES resources(id) ON DELETE CASCADE,
    local_dir TEXT NOT NULL,
    remote_base_url TEXT NOT NULL DEFAULT '',
    remote_zip_name TEXT,
    bytes_loaded INTEGER NOT NULL DEFAULT 0,
    bytes_total INTEGER NOT NULL DEFAULT 0,
    download_started TEXT,
    download_stopped TEXT,
    CHECK ((issue_id IS NULL) <> (resources_id IS NULL))
);

CREATE TABLE IF NOT EXISTS payload_files (
    payload_id INTEGER NOT NULL REFERENCES payloads(id) ON DELETE CASCADE,
    file_id INTEGER NOT NULL REFERENCES file_entries(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (payload_id, file_id)
);
CREATE INDEX IF NOT EXISTS idx_payload_files_file ON payload_files(file_id);

CREATE TABLE IF NOT EXISTS sections (
    id INTEGER PRIMARY KEY,
    issue_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    html_id INTEGER UNIQUE REFERENCES file_entries(id) ON DELETE SET NULL,
    name TEXT NOT NULL,
    extended_title TEXT,
    type TEXT NOT NULL DEFAULT 'articles',
    nav_button_id INTEGER REFERENCES images(id) ON DELETE SET NULL,
    position INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS section_articles (
    section_id INTEGER NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (section_id, article_id)
);
CREATE INDEX IF NOT EXISTS idx_section_articles_article ON section_articles(article_id);

CREATE TABLE IF NOT EXISTS section_images (
    section_id INTEGER NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (section_id, image_id)
);

CREATE TABLE IF NOT EXISTS authors (
    id INTEGER PRIMARY KEY,
    name TEXT,
    photo_id INTEGER REFERENCES images(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_authors_name ON authors(name);

CREATE TABLE IF NOT EXISTS article_authors (
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    author_id INTEGER NOT NULL REFERENCES authors(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (article_id, author_id)
);

CREATE TABLE IF NOT EXISTS article_images (
    article_id INTEGER NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (article_id, image_id)
);

CREATE TABLE IF NOT EXISTS pages (
    id INTEGER PRIMARY KEY,
    issue_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
    pdf_id INTEGER UNIQUE REFERENCES file_entries(id) ON DELETE SET NULL,
    facsimile_id INTEGER REFERENCES images(id) ON DELETE SET NULL,
    title TEXT,
    pagina TEXT,
    type TEXT NOT NULL DEFAULT 'unknown',
    position INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS frames (
    id INTEGER PRIMARY KEY,
    page_id INTEGER NOT NULL REFERENCES pages(id) ON DELETE CASCADE,
    x1 REAL NOT NULL,
    y1 REAL NOT NULL,
    x2 REAL NOT NULL,
    y2 REAL NOT NULL,
    link TEXT,
    article_id INTEGER REFERENCES articles(id) ON DELETE SET NULL,
    position INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_frames_page ON frames(page_id);

CREATE TABLE IF NOT EXISTS moments (
    id INTEGER PRIMARY KEY,
    issue_id INTEGER NOT NULL UNIQUE REFERENCES issues(id) ON DELETE CASCADE,
    data BLOB,
    first_page_id INTEGER REFERENCES pages(id) ON DELETE SET NULL
);

-- kind is 'image' or 'credit'
CREATE TABLE IF NOT EXISTS moment_images (
    moment_id INTEGER NOT NULL REFERENCES moments(id) ON DELETE CASCADE,
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    kind TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (moment_id, image_id, kind)
);

CREATE TABLE IF NOT EXISTS moment_animation (
    moment_id INTEGER NOT NULL REFERENCES moments(id) ON DELETE CASCADE,
    file_id INTEGER NOT NULL REFERENCES file_entries(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (moment_id, file_id)
);
"""


class Database:
    """
    SQLite-backed persistence context for all cache entities.

    One connection, guarded by a re-entrant lock. Writes accumulate in an
    open transaction until save() commits them. Callbacks registered with
    on_commit() run after a successful commit; callbacks registered inside
    a savepoint that is rolled back are dropped with it.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._savepoint_depth = 0
        self._on_commit: list[Callable[[], None]] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            # WAL keeps committed state intact if the process dies mid-write
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
            version = self._conn.execute("PRAGMA user_version").fetchone()[0]
            if version > SCHEMA_VERSION:
                raise PersistenceError(
                    f"Database schema {version} is newer than supported ({SCHEMA_VERSION})"
                )
            if version < SCHEMA_VERSION:
                self._conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self._db_path}: {e}") from e

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Database is closed")
        return self._conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a read statement."""
        with self._lock:
            return self._require_conn().execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._require_conn().execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._require_conn().execute(sql, params).fetchone()

    def scalar(self, sql: str, params: tuple = ()) -> Any:
        row = self.query_one(sql, params)
        return None if row is None else row[0]

    def write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a write statement inside the pending transaction."""
        with self._lock:
            conn = self._require_conn()
            if not conn.in_transaction:
                conn.execute("BEGIN")
            return conn.execute(sql, params)

    def insert(self, sql: str, params: tuple = ()) -> int:
        """Run an INSERT and return the new row ID."""
        return self.write(sql, params).lastrowid

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """
        Run a block atomically.

        The lock is held for the whole block. Nested blocks become
        savepoints: if the block raises, its changes (and on-commit
        callbacks registered within it) are rolled back and the exception
        propagates. Nothing is committed here; call save().
        """
        with self._lock:
            conn = self._require_conn()
            if not conn.in_transaction:
                conn.execute("BEGIN")
            self._savepoint_depth += 1
            name = f"sp_{self._savepoint_depth}"
            callbacks_mark = len(self._on_commit)
            conn.execute(f"SAVEPOINT {name}")
            try:
                yield self
            except BaseException:
                conn.execute(f"ROLLBACK TO {name}")
                conn.execute(f"RELEASE {name}")
                del self._on_commit[callbacks_mark:]
                raise
            else:
                conn.execute(f"RELEASE {name}")
            finally:
                self._savepoint_depth -= 1

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run callback after the pending transaction commits."""
        with self._lock:
            self._on_commit.append(callback)

    @property
    def dirty(self) -> bool:
        """True if there are uncommitted changes."""
        with self._lock:
            return self._conn is not None and self._conn.in_transaction

    def save(self) -> None:
        """
        Commit pending changes, then run on-commit callbacks.

        Raises:
            PersistenceError: If the commit fails. The pending transaction
                is rolled back and its callbacks are discarded.
        """
        with self._lock:
            conn = self._require_conn()
            if self._savepoint_depth:
                raise PersistenceError("Cannot save inside an open transaction block")
            if conn.in_transaction:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error:
                        logger.warning("Rollback after failed commit also failed")
                    self._on_commit.clear()
                    raise PersistenceError(f"Failed to save {self._db_path}: {e}") from e
            callbacks, self._on_commit = self._on_commit, []
        for callback in callbacks:
            callback()

    def rollback(self) -> None:
        """Discard pending changes."""
        with self._lock:
            conn = self._require_conn()
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            self._on_commit.clear()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection. Uncommitted changes are lost."""
        with self._lock:
            if self._conn is not None:
                if self._conn.in_transaction:
                    logger.warning("Closing %s with unsaved changes", self._db_path)
                    self._conn.execute("ROLLBACK")
                self._conn.close()
                self._conn = None
                self._on_commit.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
