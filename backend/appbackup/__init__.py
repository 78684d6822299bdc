"""Snapshot backups of the application's settings and database files."""

from .commands import (
    BackupCommandHandler,
    BackupRequest,
    CommandError,
    CommandResult,
    parse_request,
)
from .errors import (
    BackupError,
    CopyFailedError,
    ErrorKind,
    NotFoundError,
    SourceMissingError,
    StorageUnavailableError,
)
from .manager import BackupManager
from .models import BackupEntry, BackupFile
from .store import SnapshotStore

__all__ = [
    "BackupCommandHandler",
    "BackupEntry",
    "BackupError",
    "BackupFile",
    "BackupManager",
    "BackupRequest",
    "CommandError",
    "CommandResult",
    "CopyFailedError",
    "ErrorKind",
    "NotFoundError",
    "SnapshotStore",
    "SourceMissingError",
    "StorageUnavailableError",
    "parse_request",
]
