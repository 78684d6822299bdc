"""Failure taxonomy shared by the snapshot store, the manager and the command surface."""

from enum import Enum


class ErrorKind(str, Enum):
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    SOURCE_MISSING = "SourceMissing"
    COPY_FAILED = "CopyFailed"
    NOT_FOUND = "NotFound"
    INTERNAL = "Internal"


class BackupError(Exception):
    """Base class for failures that are reported to callers with a kind."""

    kind: ErrorKind = ErrorKind.INTERNAL


class StorageUnavailableError(BackupError):
    """The store root cannot be created, read or written."""

    kind = ErrorKind.STORAGE_UNAVAILABLE


class SourceMissingError(BackupError):
    """A settings or database artifact does not exist at backup time."""

    kind = ErrorKind.SOURCE_MISSING


class CopyFailedError(BackupError):
    """An I/O error happened while capturing the sources."""

    kind = ErrorKind.COPY_FAILED


class NotFoundError(BackupError):
    kind = ErrorKind.NOT_FOUND
