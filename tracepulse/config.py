"""Configuration using Pydantic Settings for automatic env var support.

Resolution order (highest first): explicit overrides passed to
``load_settings``, the JSON config file, ``TRACEPULSE_*`` environment
variables, defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracepulse.errors import ConfigError
from tracepulse.lib.json import JSONDecodeError, loads
from tracepulse.paths import config_home, data_home, default_codex_home

CONFIG_ENV = "TRACEPULSE_CONFIG"
DEFAULT_CONFIG_NAME = "config.json"

SignatureMode = Literal["stat", "content"]


class Settings(BaseSettings):
    """Runtime settings for the ingestion pipeline and dashboard server."""

    codex_home: Path = Field(default_factory=default_codex_home)
    db_path: Path = Field(default_factory=lambda: data_home() / "tracepulse.db")

    debounce_ms: int = Field(default=500, ge=0)
    heartbeat_interval_s: float = Field(default=30.0, gt=0)
    metrics_interval_s: float = Field(default=60.0, gt=0)
    query_cache_ttl_ms: int = Field(default=30_000, ge=0)
    subscriber_queue_size: int = Field(default=256, ge=1)

    signature_mode: SignatureMode = "stat"
    # Failed files keep their last good signature and are retried every run.
    retry_failed: bool = True
    store_content: bool = False
    # Tool calls from codex-tui.log, stored without a session.
    ingest_tui_log: bool = True
    # Read .git/config of session working directories to name projects.
    inspect_git: bool = True

    config_path: Path | None = Field(default=None, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="TRACEPULSE_",
        extra="forbid",
    )

    @field_validator("codex_home", "db_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @property
    def sessions_dir(self) -> Path:
        return self.codex_home / "sessions"

    @property
    def tui_log_path(self) -> Path:
        return self.codex_home / "log" / "codex-tui.log"


def _config_path(explicit: Path | None = None) -> Path:
    if explicit:
        return explicit.expanduser()
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return config_home() / DEFAULT_CONFIG_NAME


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = loads(path.read_bytes())
    except (OSError, JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def load_settings(path: Path | None = None, **overrides: Any) -> Settings:
    """Load settings from the config file, environment and overrides.

    Raises:
        ConfigError: If the file is unreadable or a value fails validation.
    """
    config_path = _config_path(path)
    values = _read_config_file(config_path)
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        settings = Settings(**values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    settings.config_path = config_path if config_path.exists() else None
    return settings


__all__ = ["CONFIG_ENV", "Settings", "SignatureMode", "load_settings"]
