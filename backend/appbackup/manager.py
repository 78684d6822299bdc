"""
Backup manager: creates, lists, sizes, prunes and deletes snapshots of the
application's settings file and database file.

Visibility of entries only ever changes through a single rename:

- create writes everything into an in-progress directory, then renames it to
  its final name;
- delete renames the entry into a trash directory, then removes the trash.

A lister therefore sees an entry either complete or not at all, whatever
happens to this process in between. Mutations additionally serialize on one
lock so name disambiguation never races.
"""

import asyncio
import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import aiofiles
from aiofiles import os as aioos
from asyncer import asyncify

from .config import Settings
from .errors import (
    BackupError,
    CopyFailedError,
    NotFoundError,
    SourceMissingError,
    StorageUnavailableError,
)
from .logger import logger
from .models import DEFAULT_REASON, BackupEntry, BackupFile
from .store import VERSION_MARKER, SnapshotStore
from .utils.fs import async_rmtree, list_tree_files

R = TypeVar("R")

COPY_CHUNK_SIZE = 1024 * 1024
SETTINGS_DIR = "settings"
DATABASE_DIR = "database"
SQLITE_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


class BackupManager:
    """Owns the backup store; all mutation of the store goes through here."""

    def __init__(
        self,
        settings_file: Path,
        database_file: Path,
        backups_dir: Path,
        app_version: Optional[str] = None,
        max_backups: Optional[int] = None,
    ):
        """
        Args:
            settings_file: Absolute path of the settings artifact
            database_file: Absolute path of the database file (or directory)
            backups_dir: Store root; created on initialize()
            app_version: Current application version, enables upgrade backups
            max_backups: Keep at most this many entries after each create
        """
        for path in (settings_file, database_file, backups_dir):
            if not Path(path).is_absolute():
                raise ValueError(f"Path must be absolute: {path}")
        if max_backups is not None and max_backups < 1:
            raise ValueError("max_backups must be at least 1")

        self.settings_file = Path(settings_file)
        self.database_file = Path(database_file)
        self.store = SnapshotStore(Path(backups_dir))
        self.app_version = app_version
        self.max_backups = max_backups

        self._lock = asyncio.Lock()
        self._initialized = False
        self._inflight: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackupManager":
        return cls(
            settings_file=settings.settings_file,
            database_file=settings.database_file,
            backups_dir=settings.backup.directory,
            app_version=settings.app_version,
            max_backups=settings.backup.max_backups,
        )

    @property
    def root(self) -> Path:
        return self.store.root

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _run_mutation(
        self, operation: Callable[..., Awaitable[R]], *args: Any
    ) -> R:
        """
        Run ``operation`` under the mutation lock in its own task.

        The task is shielded: a caller that stops waiting does not interrupt
        a copy or delete halfway, the operation finishes or rolls back.
        """

        async def locked() -> R:
            async with self._lock:
                return await operation(*args)

        task = asyncio.ensure_future(locked())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _ensure_root(self) -> None:
        try:
            await aioos.makedirs(self.root, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot create backup directory {self.root}: {e}"
            ) from e

        if not await aioos.path.isdir(self.root):
            raise StorageUnavailableError(f"Backup path {self.root} is not a directory")
        if not await aioos.access(self.root, os.R_OK | os.W_OK | os.X_OK):
            raise StorageUnavailableError(f"Backup directory {self.root} is not writable")

    async def initialize(self) -> None:
        """
        Prepare the store for use. Safe to call repeatedly.

        Ensures the store root exists and is writable, removes artifacts of
        interrupted creates/deletes, and takes an upgrade backup when the
        application version changed since the last run.

        Raises:
            StorageUnavailableError: If the store root is unusable
        """
        if self._initialized:
            return
        await self._run_mutation(self._initialize_locked)

    async def _initialize_locked(self) -> None:
        if self._initialized:
            return

        logger.info(f"Initializing backup manager at {self.root}")
        await self._ensure_root()
        await self._sweep_residuals()
        await self._backup_on_version_change()
        self._initialized = True
        logger.info("Backup manager initialized")

    async def _sweep_residuals(self) -> None:
        for residual in await self.store.list_residuals():
            logger.warning(f"Removing leftover backup artifact {residual.name}")
            try:
                if await aioos.path.isdir(residual):
                    await async_rmtree(residual)
                else:
                    await aioos.remove(residual)
            except OSError as e:
                logger.error(f"Failed to remove leftover artifact {residual}: {e}")

    async def _backup_on_version_change(self) -> None:
        if not self.app_version:
            return

        marker = self.root / VERSION_MARKER
        previous: Optional[str] = None
        if await aioos.path.exists(marker):
            async with aiofiles.open(marker, "r", encoding="utf-8") as f:
                previous = (await f.read()).strip() or None

        if previous is not None and previous != self.app_version:
            logger.info(
                f"Application version changed {previous} -> {self.app_version}, "
                "creating upgrade backup"
            )
            try:
                await self._create_locked(f"upgrade_from_{previous}")
            except BackupError as e:
                # Marker stays at the old version so the next start retries
                logger.error(f"Upgrade backup failed: {e}")
                return

        if previous != self.app_version:
            async with aiofiles.open(marker, "w", encoding="utf-8") as f:
                await f.write(self.app_version)

    async def create_backup(self, reason: str = DEFAULT_REASON) -> str:
        """
        Capture the settings and database files into a new entry.

        Returns:
            Name of the new entry

        Raises:
            SourceMissingError: If a source file does not exist
            CopyFailedError: If copying failed; nothing is left in the store
            StorageUnavailableError: If the store root is unusable
        """
        return await self._run_mutation(self._create_locked, reason or DEFAULT_REASON)

    async def _create_locked(self, reason: str) -> str:
        await self._ensure_root()

        for source in (self.settings_file, self.database_file):
            if not await aioos.path.exists(source):
                raise SourceMissingError(f"Source file does not exist: {source}")

        created_at = datetime.now(timezone.utc)
        name = await self.store.next_free_name(created_at)
        temp_dir = self.store.temp_path(name)

        try:
            await aioos.makedirs(temp_dir / SETTINGS_DIR)
            await aioos.makedirs(temp_dir / DATABASE_DIR)
        except OSError as e:
            await self._discard(temp_dir)
            raise StorageUnavailableError(
                f"Cannot create backup entry in {self.root}: {e}"
            ) from e

        try:
            files = [
                await self._copy_file(
                    self.settings_file,
                    temp_dir,
                    f"{SETTINGS_DIR}/{self.settings_file.name}",
                )
            ]
            files.extend(await self._copy_database(temp_dir))

            entry = BackupEntry(
                name=name,
                created_at=created_at,
                reason=reason,
                app_version=self.app_version,
                files=files,
            )
            await self.store.write_manifest(temp_dir, entry)
        except OSError as e:
            await self._discard(temp_dir)
            raise CopyFailedError(f"Failed to copy backup sources: {e}") from e
        except BaseException:
            await self._discard(temp_dir)
            raise

        try:
            await self.store.promote(temp_dir, name)
        except OSError as e:
            await self._discard(temp_dir)
            raise StorageUnavailableError(f"Failed to promote backup {name}: {e}") from e

        logger.info(
            f"Created backup {name} (reason={reason}, files={len(files)}, "
            f"bytes={entry.total_size})"
        )

        if self.max_backups is not None:
            try:
                await self._prune_locked(self.max_backups)
            except BackupError as e:
                # Don't fail the backup itself if pruning fails
                logger.error(f"Pruning after backup {name} failed: {e}")

        return name

    async def _copy_database(self, entry_dir: Path) -> List[BackupFile]:
        if await aioos.path.isdir(self.database_file):
            files = []
            for source in await list_tree_files(self.database_file):
                relative = PurePosixPath(
                    DATABASE_DIR,
                    self.database_file.name,
                    *source.relative_to(self.database_file).parts,
                )
                files.append(await self._copy_file(source, entry_dir, str(relative)))
            return files

        files = [
            await self._copy_file(
                self.database_file,
                entry_dir,
                f"{DATABASE_DIR}/{self.database_file.name}",
            )
        ]
        # WAL/journal siblings belong to the database state and travel with it
        for suffix in SQLITE_SIDECAR_SUFFIXES:
            sidecar = self.database_file.with_name(self.database_file.name + suffix)
            if await aioos.path.exists(sidecar):
                files.append(
                    await self._copy_file(
                        sidecar, entry_dir, f"{DATABASE_DIR}/{sidecar.name}"
                    )
                )
        return files

    async def _copy_file(self, source: Path, entry_dir: Path, relative: str) -> BackupFile:
        """Stream ``source`` to ``entry_dir/relative``, hashing as it goes."""
        target = entry_dir / relative
        await aioos.makedirs(target.parent, exist_ok=True)

        digest = hashlib.sha256()
        size = 0
        async with aiofiles.open(source, "rb") as f_in:
            async with aiofiles.open(target, "wb") as f_out:
                while chunk := await f_in.read(COPY_CHUNK_SIZE):
                    digest.update(chunk)
                    size += len(chunk)
                    await f_out.write(chunk)
                await f_out.flush()
                await asyncify(os.fsync)(f_out.fileno())

        return BackupFile(path=relative, size=size, sha256=digest.hexdigest())

    async def _discard(self, temp_dir: Path) -> None:
        if not await aioos.path.exists(temp_dir):
            return
        try:
            await async_rmtree(temp_dir)
            logger.warning(f"Rolled back incomplete backup {temp_dir.name}")
        except OSError as e:
            logger.error(
                f"Failed to remove incomplete backup {temp_dir}, "
                f"it will be removed on next initialization: {e}"
            )

    async def list_backups(self) -> List[BackupEntry]:
        """
        All promoted entries, most recent first.

        In-progress and half-deleted entries are never included. An empty or
        not yet created store yields an empty list.

        Raises:
            StorageUnavailableError: If the store root cannot be read
        """
        try:
            names = await self.store.list_entry_names()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot read backup directory {self.root}: {e}"
            ) from e

        entries = []
        for name in names:
            entry = await self.store.read_manifest(name)
            if entry is not None:
                entries.append(entry)
        return self.store.sort_newest_first(entries)

    async def delete_backup(self, name: str) -> None:
        """
        Remove an entry and all of its files.

        Raises:
            NotFoundError: If no entry with this name exists
            StorageUnavailableError: If the entry could not be detached
        """
        await self._run_mutation(self._delete_locked, name)

    async def _delete_locked(self, name: str) -> None:
        if not await self.store.exists(name):
            raise NotFoundError(f"Backup not found: {name}")

        trash_dir = self.store.trash_path(name)
        try:
            await aioos.rename(self.store.entry_path(name), trash_dir)
        except FileNotFoundError as e:
            raise NotFoundError(f"Backup not found: {name}") from e
        except OSError as e:
            raise StorageUnavailableError(f"Failed to delete backup {name}: {e}") from e

        logger.info(f"Deleted backup {name}")

        try:
            await async_rmtree(trash_dir)
        except OSError as e:
            logger.error(
                f"Backup {name} is deleted but {trash_dir.name} could not be "
                f"removed, it will be removed on next initialization: {e}"
            )

    async def get_backup_size(self, name: str) -> int:
        """
        Combined size in bytes of the files captured in an entry.

        Raises:
            NotFoundError: If no entry with this name exists
            StorageUnavailableError: If the entry cannot be read
        """
        if not await self.store.exists(name):
            raise NotFoundError(f"Backup not found: {name}")
        try:
            return await self.store.entry_size(name)
        except FileNotFoundError as e:
            # Deleted between the existence check and the walk
            raise NotFoundError(f"Backup not found: {name}") from e
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read backup {name}: {e}") from e

    async def prune_backups(self, keep: int) -> List[str]:
        """
        Delete all but the ``keep`` most recent entries.

        Returns:
            Names of the deleted entries, oldest last
        """
        if keep < 0:
            raise ValueError("keep must not be negative")
        return await self._run_mutation(self._prune_locked, keep)

    async def _prune_locked(self, keep: int) -> List[str]:
        entries = await self.list_backups()
        deleted = []
        for entry in entries[keep:]:
            try:
                await self._delete_locked(entry.name)
            except NotFoundError:
                continue
            deleted.append(entry.name)

        if deleted:
            logger.info(f"Pruned {len(deleted)} backup(s), kept {keep}: {deleted}")
        return deleted
