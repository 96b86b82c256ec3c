"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (CODEXSYNC__FETCHER__RATE_LIMIT_PER_MINUTE=20)
  2. codexsync.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. Only ``provider.api_key`` must be supplied
before a live fetch; cache-only commands run without it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("codexsync")
_DEFAULT_CACHE_DIR = str(Path(_DEFAULT_DATA_DIR) / "scrape-cache")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "codexsync.db")
_DEFAULT_SNAPSHOT_DIR = str(Path(_DEFAULT_DATA_DIR) / "snapshots")


def _find_config_file() -> str | None:
    """Return the path of the first codexsync.yaml found, or None."""
    candidates = [
        Path("codexsync.yaml"),
        Path(platformdirs.user_config_dir("codexsync")) / "codexsync.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ProviderSettings(BaseModel):
    api_url: str = "https://api.firecrawl.dev/v1/scrape"
    api_key: str = ""
    timeout_ms: int = Field(default=30_000, gt=0)


class FetcherSettings(BaseModel):
    rate_limit_per_minute: int = Field(default=10, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: int = Field(default=2_000, ge=0)
    validate_concurrency: int = Field(default=5, ge=1)


class CacheSettings(BaseModel):
    dir: str = _DEFAULT_CACHE_DIR


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class SnapshotSettings(BaseModel):
    dir: str = _DEFAULT_SNAPSHOT_DIR


class AuditSettings(BaseModel):
    stale_after_days: int = Field(default=30, ge=0)


class SourceSettings(BaseModel):
    base_url: str = "https://wahapedia.ru/wh40k10ed"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "text"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CODEXSYNC__CACHE__DIR=/tmp/cache
        env_prefix="CODEXSYNC__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    provider: ProviderSettings = ProviderSettings()
    fetcher: FetcherSettings = FetcherSettings()
    cache: CacheSettings = CacheSettings()
    store: StoreSettings = StoreSettings()
    snapshots: SnapshotSettings = SnapshotSettings()
    audit: AuditSettings = AuditSettings()
    source: SourceSettings = SourceSettings()
    logging: LoggingSettings = LoggingSettings()

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
        )
