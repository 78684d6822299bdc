import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_CONFIG_PATH = os.getenv("APPBACKUP_CONFIG", "config.toml")
_ENV_PATH = os.getenv("APPBACKUP_ENV", ".env")


def _absolute(path: Path) -> Path:
    return path.expanduser().absolute()


class BackupSettings(BaseModel):
    directory: Path = Path("backups")
    max_backups: Optional[int] = Field(default=None, ge=1)

    @field_validator("directory")
    @classmethod
    def make_absolute(cls, v: Path) -> Path:
        return _absolute(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        toml_file=_CONFIG_PATH,
        env_file=_ENV_PATH,
        extra="ignore",
    )

    settings_file: Path = Path("settings.json")
    database_file: Path = Path("sqlite.db")
    backup: BackupSettings = Field(default_factory=BackupSettings)
    app_version: Optional[str] = None

    logs_dir: Path = Field(default=Path("logs"))
    host: str = "127.0.0.1"
    port: int = 5678

    @field_validator("settings_file", "database_file")
    @classmethod
    def make_absolute(cls, v: Path) -> Path:
        # The manager only accepts absolute source paths
        return _absolute(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Source order: init args > OS env > .env > config.toml > secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
