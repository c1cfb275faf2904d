"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (TYPEACQUIRE__INSTALLER__TIMEOUT_SECONDS=60)
  2. typeacquire.yaml       (searched in cwd, then the user config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_APP_NAME = "typeacquire"

_DEFAULT_DATA_DIR = platformdirs.user_data_dir(_APP_NAME)
_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir(_APP_NAME)
_DEFAULT_TYPINGS_ROOT = str(Path(_DEFAULT_CACHE_DIR) / "typings")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "metadata.db")


def _find_config_file() -> str | None:
    """Return the path of the first typeacquire.yaml found, or None."""
    candidates = [
        Path("typeacquire.yaml"),
        Path(platformdirs.user_config_dir(_APP_NAME)) / "typeacquire.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class RegistrySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = "https://registry.npmjs.org"
    # Package whose index.json maps typing names to their dist-tags.
    index_package: str = "types-registry"
    index_ttl_hours: int = 24
    request_timeout_seconds: float = 30.0


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    typings_root: str = _DEFAULT_TYPINGS_ROOT
    db_path: str = _DEFAULT_DB_PATH
    metadata_ttl_hours: int = 24
    cleanup_interval_hours: int = 6


class InstallerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Selects the "ts<major.minor>" dist-tag of each declaration package.
    typescript_version: str = "5.4"
    timeout_seconds: float = 300.0
    max_concurrent_downloads: int = 8


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: TYPEACQUIRE__CACHE__DB_PATH=/tmp/x.db
        env_prefix="TYPEACQUIRE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    data_dir: str = _DEFAULT_DATA_DIR
    registry: RegistrySettings = RegistrySettings()
    cache: CacheSettings = CacheSettings()
    installer: InstallerSettings = InstallerSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def registry_snapshot_path(self) -> Path:
        return Path(self.data_dir).expanduser() / "registry-index.json"

    @property
    def typings_root(self) -> Path:
        return Path(self.cache.typings_root).expanduser()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
