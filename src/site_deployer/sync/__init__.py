"""File sync engine."""

from .file_sync import FileRecord, FileSyncEngine, SyncOutcome, SyncReport

__all__ = ["FileRecord", "FileSyncEngine", "SyncOutcome", "SyncReport"]
