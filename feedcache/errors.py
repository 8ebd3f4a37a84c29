"""
Exceptions and error logging for the feed cache.

Per-entity merge failures are isolated and collected in a MergeReport;
persistence failures are fatal and raised immediately. The CLI logs full
stack traces to a file while showing clean messages to users.
"""

import os
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


class FeedCacheError(Exception):
    """Base class for feed cache errors."""


class IntegrityError(FeedCacheError):
    """A snapshot cannot be merged without breaking the stored graph.

    Raised for missing required fields (an article without HTML file) and
    for uniqueness violations. Only the failing subtree is rolled back.
    """

    def __init__(self, entity: str, key: str, message: str):
        super().__init__(f"{entity} {key}: {message}")
        self.entity = entity
        self.key = key
        self.message = message


class PersistenceError(FeedCacheError):
    """The database could not be opened or a flush failed."""


@dataclass
class MergeFailure:
    """One subtree that could not be merged."""
    entity: str
    key: str
    message: str


@dataclass
class MergeReport:
    """Outcome of a merge: which subtrees failed, how many issues merged."""
    issues_merged: int = 0
    errors: list[MergeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, exc: IntegrityError) -> None:
        self.errors.append(MergeFailure(exc.entity, exc.key, exc.message))


def _error_log_path() -> Path:
    """Resolve error log path, respecting FEEDCACHE_STORE_PATH."""
    store = os.environ.get("FEEDCACHE_STORE_PATH")
    if store:
        return Path(store) / "feedcache-errors.log"
    return Path.home() / ".feedcache" / "feedcache-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
