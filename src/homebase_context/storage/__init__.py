"""SQLite-backed storage layer for conversation context."""

from homebase_context.storage.base import Database, utcnow
from homebase_context.storage.exceptions import (
    DatabaseError,
    MessageNotFoundError,
    MigrationError,
    OverlapError,
    SnapshotNotFoundError,
    StorageError,
    StoreUnavailableError,
)
from homebase_context.storage.messages import MessageStore
from homebase_context.storage.migrations import Migration, get_all_migrations
from homebase_context.storage.snapshots import SnapshotCounts, SnapshotStore

__all__ = [
    # Base
    "Database",
    "utcnow",
    # Exceptions
    "DatabaseError",
    "MessageNotFoundError",
    "MigrationError",
    "OverlapError",
    "SnapshotNotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # Messages
    "MessageStore",
    # Migrations
    "Migration",
    "get_all_migrations",
    # Snapshots
    "SnapshotCounts",
    "SnapshotStore",
]
