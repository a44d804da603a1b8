"""Storage-specific exceptions."""


class StorageError(Exception):
    """Base exception for storage operations."""


class DatabaseError(StorageError):
    """Database connection or query failure."""


class StoreUnavailableError(DatabaseError):
    """Database file cannot be opened, is locked, or is otherwise unreachable."""


class MigrationError(StorageError):
    """Schema migration failure."""


class SnapshotNotFoundError(StorageError):
    """Requested snapshot ID does not exist."""

    def __init__(self, snapshot_id: str) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot {snapshot_id} not found")


class OverlapError(StorageError):
    """Snapshot range overlaps messages already archived for the thread."""

    def __init__(self, thread_id: str, first_seq: int, archived_through: int) -> None:
        self.thread_id = thread_id
        self.first_seq = first_seq
        self.archived_through = archived_through
        super().__init__(
            f"Snapshot for thread '{thread_id}' starts at message #{first_seq}, "
            f"but messages through #{archived_through} are already archived"
        )


class MessageNotFoundError(StorageError):
    """Message ID is not (or no longer) part of the thread."""

    def __init__(self, message_id: str, thread_id: str) -> None:
        self.message_id = message_id
        self.thread_id = thread_id
        super().__init__(f"Message {message_id} is not in thread '{thread_id}'")
