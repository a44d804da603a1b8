"""Base database connection and migration runner."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from homebase_context.clock import from_iso, to_iso, utcnow
from homebase_context.storage.exceptions import (
    DatabaseError,
    MigrationError,
    StoreUnavailableError,
)

LOGGER = logging.getLogger(__name__)

if TYPE_CHECKING:
    from homebase_context.storage.migrations import Migration

__all__ = ["Database", "from_iso", "to_iso", "utcnow", "wrap_error"]


def wrap_error(message: str, error: sqlite3.Error) -> DatabaseError:
    """Map a sqlite error to the storage hierarchy.

    OperationalError covers locked, missing and unreadable databases, which
    callers treat as "store unavailable" rather than a query bug.
    """
    if isinstance(error, sqlite3.OperationalError):
        return StoreUnavailableError(f"{message}: {error}")
    return DatabaseError(f"{message}: {error}")


class Database:
    """SQLite connection wrapper with migration support.

    Each OS thread gets its own connection to the same file, so the Flask
    dev server and the summarizer can share one Database instance.
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._all_conns: list[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()

    @property
    def conn(self) -> sqlite3.Connection:
        """Lazy per-thread connection with foreign keys enabled."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    timeout=self.busy_timeout,
                    isolation_level=None,  # autocommit for explicit transaction control
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                raise StoreUnavailableError(
                    f"Failed to connect to {self.db_path}: {e}"
                ) from e
            self._local.conn = conn
            with self._conns_lock:
                self._all_conns.append(conn)
        return conn

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for explicit transactions.

        ``immediate=True`` takes the write lock up front so a read-check-write
        sequence cannot interleave with another writer.
        """
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def close(self) -> None:
        """Close every connection opened through this wrapper."""
        with self._conns_lock:
            conns, self._all_conns = self._all_conns, []
        for conn in conns:
            conn.close()
        self._local = threading.local()

    def get_schema_version(self) -> int:
        """Get current schema version, 0 if no migrations applied."""
        try:
            cursor = self.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            )
            if cursor.fetchone() is None:
                return 0
            cursor = self.conn.execute("SELECT MAX(version) FROM schema_version")
            row = cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except sqlite3.Error as e:
            raise wrap_error("Failed to get schema version", e) from e

    def run_migrations(self, migrations: list[Migration]) -> int:
        """
        Apply pending migrations.

        Returns: Number of migrations applied.
        """
        current_version = self.get_schema_version()
        applied = 0

        for migration in migrations:
            if migration.version <= current_version:
                LOGGER.debug(
                    "Skipping migration %d (%s): already applied",
                    migration.version,
                    migration.name,
                )
                continue

            try:
                with self.transaction(immediate=True) as conn:
                    # Another process may have migrated while we waited for the lock
                    if migration.version <= self._version_in(conn):
                        continue
                    for statement in migration.statements:
                        conn.execute(statement)
                    conn.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (migration.version, to_iso(utcnow())),
                    )
                applied += 1
                LOGGER.info(
                    "Applied migration %d: %s", migration.version, migration.name
                )
            except sqlite3.Error as e:
                LOGGER.error(
                    "Migration %d (%s) failed: %s",
                    migration.version,
                    migration.name,
                    e,
                )
                raise MigrationError(
                    f"Migration {migration.version} ({migration.name}) failed: {e}"
                ) from e

        return applied

    @staticmethod
    def _version_in(conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ).fetchone()
        if row is None:
            return 0
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0
