"""
Directory-backed snapshot store.

Layout logic only: naming, enumeration, manifest I/O and size accounting for
the entries under a single root directory. Every promoted entry is a
directory named by its UTC creation time::

    <root>/20261019T101500Z/           promoted entry
    <root>/20261019T101500Z-1/         same second, disambiguated
    <root>/.tmp-20261019T101512Z-ab12/ in-progress entry, never listed
    <root>/.trash-20261019T101500Z-cd34/ entry being deleted, never listed

Anything that does not match the entry name pattern is invisible to listing.
"""

import json
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
from aiofiles import os as aioos
from asyncer import asyncify
from pydantic import ValidationError

from .logger import logger
from .models import BackupEntry

MANIFEST_NAME = "backup.json"
VERSION_MARKER = ".version"
IN_PROGRESS_PREFIX = ".tmp-"
TRASH_PREFIX = ".trash-"
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"

_ENTRY_NAME_RE = re.compile(r"^(?P<stamp>\d{8}T\d{6}Z)(?:-(?P<counter>[1-9]\d*))?$")


def format_entry_name(created_at: datetime, counter: int = 0) -> str:
    """Build the entry name for a creation time and collision counter."""
    stamp = created_at.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    return stamp if counter == 0 else f"{stamp}-{counter}"


def parse_entry_name(name: str) -> Optional[tuple[datetime, int]]:
    """Return (timestamp, counter) for a valid entry name, None otherwise."""
    match = _ENTRY_NAME_RE.match(name)
    if match is None:
        return None
    try:
        stamp = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return stamp.replace(tzinfo=timezone.utc), int(match.group("counter") or 0)


def is_entry_name(name: str) -> bool:
    return parse_entry_name(name) is not None


def _raise_walk_error(error: OSError) -> None:
    raise error


@asyncify
def _tree_size(path: Path, exclude: Path) -> int:
    """
    Sum file sizes under ``path``.

    Raises:
        FileNotFoundError: If ``path`` is gone before or during the walk
    """
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path, onerror=_raise_walk_error):
        for filename in filenames:
            file_path = Path(dirpath) / filename
            if file_path == exclude:
                continue
            try:
                total += file_path.stat().st_size
            except FileNotFoundError:
                continue
    # A concurrent delete may have renamed the whole tree away mid-walk
    if not os.path.isdir(path):
        raise FileNotFoundError(f"Directory vanished while sizing: {path}")
    return total


@asyncify
def _fsync_dir(path: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class SnapshotStore:
    """Read-mostly view over the entries under ``root``."""

    def __init__(self, root: Path):
        self.root = root

    def entry_path(self, name: str) -> Path:
        if not is_entry_name(name):
            raise ValueError(f"Invalid backup name: {name!r}")
        return self.root / name

    def temp_path(self, name: str) -> Path:
        return self.root / f"{IN_PROGRESS_PREFIX}{name}-{uuid.uuid4().hex[:8]}"

    def trash_path(self, name: str) -> Path:
        return self.root / f"{TRASH_PREFIX}{name}-{uuid.uuid4().hex[:8]}"

    def manifest_path(self, entry_dir: Path) -> Path:
        return entry_dir / MANIFEST_NAME

    async def exists(self, name: str) -> bool:
        if not is_entry_name(name):
            return False
        return await aioos.path.isdir(self.root / name)

    async def list_entry_names(self) -> List[str]:
        """
        Names of all promoted entries, unordered.

        Raises:
            FileNotFoundError: If the root does not exist
            OSError: If the root cannot be read
        """
        names = []
        for name in await aioos.listdir(self.root):
            if is_entry_name(name) and await aioos.path.isdir(self.root / name):
                names.append(name)
        return names

    async def list_residuals(self) -> List[Path]:
        """In-progress and trash artifacts left behind by interrupted runs."""
        if not await aioos.path.isdir(self.root):
            return []
        return [
            self.root / name
            for name in await aioos.listdir(self.root)
            if name.startswith((IN_PROGRESS_PREFIX, TRASH_PREFIX))
        ]

    async def next_free_name(self, created_at: datetime) -> str:
        counter = 0
        while True:
            name = format_entry_name(created_at, counter)
            if not await aioos.path.exists(self.root / name):
                return name
            counter += 1

    async def write_manifest(self, entry_dir: Path, entry: BackupEntry) -> None:
        async with aiofiles.open(self.manifest_path(entry_dir), "w", encoding="utf-8") as f:
            await f.write(entry.model_dump_json(indent=2))
            await f.flush()
            await asyncify(os.fsync)(f.fileno())

    async def read_manifest(self, name: str) -> Optional[BackupEntry]:
        """
        Load the manifest of a promoted entry.

        Returns None if the entry vanished meanwhile (deleted concurrently),
        or if its manifest cannot be read or parsed.
        """
        manifest = self.manifest_path(self.entry_path(name))
        try:
            async with aiofiles.open(manifest, "r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping backup {name}: cannot read manifest ({e})")
            return None

        try:
            entry = BackupEntry.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Skipping backup {name}: unreadable manifest ({e})")
            return None

        # The directory name is the handle callers use, whatever the manifest says
        if entry.name != name:
            entry = entry.model_copy(update={"name": name})
        return entry

    async def promote(self, temp_dir: Path, name: str) -> Path:
        """
        Atomically publish a fully written temporary entry under ``name``.

        Raises:
            OSError: Only if the rename failed; once renamed the entry is
                published and a failed directory sync is just logged
        """
        final_path = self.entry_path(name)
        if await aioos.path.exists(final_path):
            raise FileExistsError(f"Backup {name} already exists")
        await aioos.rename(temp_dir, final_path)
        try:
            await _fsync_dir(self.root)
        except OSError as e:
            logger.warning(f"Published backup {name} but could not sync {self.root}: {e}")
        return final_path

    async def entry_size(self, name: str) -> int:
        """Total bytes of the captured files in an entry, manifest excluded."""
        entry_dir = self.entry_path(name)
        return await _tree_size(entry_dir, self.manifest_path(entry_dir))

    @staticmethod
    def sort_newest_first(entries: List[BackupEntry]) -> List[BackupEntry]:
        def sort_key(entry: BackupEntry) -> tuple[datetime, int]:
            parsed = parse_entry_name(entry.name)
            counter = parsed[1] if parsed else 0
            return entry.created_at, counter

        return sorted(entries, key=sort_key, reverse=True)
