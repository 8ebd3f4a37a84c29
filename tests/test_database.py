"""Tests for the SQLite entity database and its transaction handling."""

import sqlite3

import pytest

from feedcache.database import SCHEMA_VERSION, Database
from feedcache.errors import PersistenceError


def _insert_feeder(db: Database, title: str) -> int:
    return db.insert("INSERT INTO feeders (title) VALUES (?)", (title,))


def _titles(db: Database) -> list[str]:
    return [r[0] for r in db.query("SELECT title FROM feeders ORDER BY title")]


class TestDatabase:
    """Tests for Database statements, savepoints and save()."""

    def test_creates_schema(self, tmp_path):
        """Should create all tables and stamp the schema version."""
        with Database(tmp_path / "cache.db") as db:
            tables = {r[0] for r in db.query(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )}
            assert {"file_entries", "issues", "payload_files", "frames"} <= tables
            assert db.scalar("PRAGMA user_version") == SCHEMA_VERSION
            assert db.scalar("PRAGMA foreign_keys") == 1

    def test_writes_are_pending_until_save(self, tmp_path):
        """A second connection sees nothing before save()."""
        path = tmp_path / "cache.db"
        db = Database(path)
        _insert_feeder(db, "A")
        assert db.dirty

        other = sqlite3.connect(str(path))
        assert other.execute("SELECT COUNT(*) FROM feeders").fetchone()[0] == 0

        db.save()
        assert not db.dirty
        assert other.execute("SELECT COUNT(*) FROM feeders").fetchone()[0] == 1
        other.close()
        db.close()

    def test_transaction_rollback_on_error(self, tmp_path):
        """A failing block leaves no trace; earlier writes survive."""
        with Database(tmp_path / "cache.db") as db:
            _insert_feeder(db, "kept")
            with pytest.raises(RuntimeError):
                with db.transaction():
                    _insert_feeder(db, "dropped")
                    raise RuntimeError("boom")
            db.save()
            assert _titles(db) == ["kept"]

    def test_nested_savepoint_rollback(self, tmp_path):
        """An inner failure only rolls back the inner block."""
        with Database(tmp_path / "cache.db") as db:
            with db.transaction():
                _insert_feeder(db, "outer")
                try:
                    with db.transaction():
                        _insert_feeder(db, "inner")
                        raise ValueError("inner fails")
                except ValueError:
                    pass
                _insert_feeder(db, "after")
            db.save()
            assert _titles(db) == ["after", "outer"]

    def test_on_commit_runs_after_save(self, tmp_path):
        with Database(tmp_path / "cache.db") as db:
            calls = []
            _insert_feeder(db, "A")
            db.on_commit(lambda: calls.append("done"))
            assert calls == []
            db.save()
            assert calls == ["done"]
            db.save()
            assert calls == ["done"]

    def test_on_commit_dropped_with_savepoint(self, tmp_path):
        """Callbacks registered in a rolled back block never run."""
        with Database(tmp_path / "cache.db") as db:
            calls = []
            db.on_commit(lambda: calls.append("outer"))
            with pytest.raises(KeyError):
                with db.transaction():
                    db.on_commit(lambda: calls.append("inner"))
                    raise KeyError("x")
            db.save()
            assert calls == ["outer"]

    def test_save_inside_transaction_fails(self, tmp_path):
        with Database(tmp_path / "cache.db") as db:
            with db.transaction():
                with pytest.raises(PersistenceError):
                    db.save()

    def test_rollback_discards(self, tmp_path):
        with Database(tmp_path / "cache.db") as db:
            calls = []
            _insert_feeder(db, "A")
            db.on_commit(lambda: calls.append(1))
            db.rollback()
            db.save()
            assert _titles(db) == []
            assert calls == []

    def test_close_discards_unsaved(self, tmp_path):
        path = tmp_path / "cache.db"
        db = Database(path)
        _insert_feeder(db, "saved")
        db.save()
        _insert_feeder(db, "unsaved")
        db.close()

        with Database(path) as db:
            assert _titles(db) == ["saved"]

    def test_closed_database_raises(self, tmp_path):
        db = Database(tmp_path / "cache.db")
        db.close()
        with pytest.raises(PersistenceError):
            db.query("SELECT 1")

    def test_newer_schema_rejected(self, tmp_path):
        path = tmp_path / "cache.db"
        conn = sqlite3.connect(str(path))
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION + 1}")
        conn.close()
        with pytest.raises(PersistenceError):
            Database(path)

    def test_unique_constraints(self, tmp_path):
        """(feed, date) is unique."""
        with Database(tmp_path / "cache.db") as db:
            feeder_id = _insert_feeder(db, "A")
            feed_id = db.insert(
                "INSERT INTO feeds (feeder_id, name) VALUES (?, ?)", (feeder_id, "daily")
            )
            db.insert("INSERT INTO issues (feed_id, date) VALUES (?, ?)", (feed_id, "2024-01-10"))
            with pytest.raises(sqlite3.IntegrityError):
                db.insert(
                    "INSERT INTO issues (feed_id, date) VALUES (?, ?)", (feed_id, "2024-01-10")
                )
