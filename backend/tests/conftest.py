"""Shared fixtures: throwaway source files and store roots per test."""

import tempfile
from pathlib import Path

import pytest

from appbackup.manager import BackupManager

SETTINGS_CONTENT = '{"theme":"dark"}'
DATABASE_CONTENT = b"\x01"


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory(prefix="appbackup_test_") as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def source_files(temp_dir):
    """Settings and database files as the application would leave them."""
    settings_file = temp_dir / "user-settings.json"
    settings_file.write_text(SETTINGS_CONTENT)
    database_file = temp_dir / "sqlite.db"
    database_file.write_bytes(DATABASE_CONTENT)
    return settings_file, database_file


@pytest.fixture
def backups_dir(temp_dir):
    return temp_dir / "backups"


@pytest.fixture
def manager(source_files, backups_dir):
    settings_file, database_file = source_files
    return BackupManager(
        settings_file=settings_file,
        database_file=database_file,
        backups_dir=backups_dir,
    )
