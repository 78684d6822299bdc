"""Tests for Settings loading and path normalization."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from appbackup.config import BackupSettings, Settings


class TestSettings:
    def test_defaults_are_absolute(self):
        s = Settings()
        assert s.settings_file.is_absolute()
        assert s.database_file.is_absolute()
        assert s.backup.directory.is_absolute()
        assert s.backup.max_backups is None

    def test_relative_paths_resolved_against_cwd(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        s = Settings(settings_file=Path("conf/settings.json"))
        assert s.settings_file == temp_dir / "conf" / "settings.json"

    def test_nested_env_override(self, monkeypatch, temp_dir):
        monkeypatch.setenv("BACKUP__MAX_BACKUPS", "3")
        monkeypatch.setenv("BACKUP__DIRECTORY", str(temp_dir / "snapshots"))
        monkeypatch.setenv("APP_VERSION", "2.0.1")

        s = Settings()

        assert s.backup.max_backups == 3
        assert s.backup.directory == temp_dir / "snapshots"
        assert s.app_version == "2.0.1"

    def test_init_args_win_over_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("DATABASE_FILE", str(temp_dir / "env.db"))
        s = Settings(database_file=temp_dir / "init.db")
        assert s.database_file == temp_dir / "init.db"

    def test_max_backups_must_be_positive(self):
        with pytest.raises(ValidationError):
            BackupSettings(max_backups=0)
