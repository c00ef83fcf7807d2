"""Shared filesystem paths and helpers for Tracepulse."""

from __future__ import annotations

import os
from pathlib import Path


def _xdg_path(env_var: str, fallback: Path) -> Path:
    raw = os.environ.get(env_var)
    if raw:
        return Path(raw).expanduser()
    return fallback


def config_home() -> Path:
    return _xdg_path("XDG_CONFIG_HOME", Path.home() / ".config") / "tracepulse"


def data_home() -> Path:
    """Resolved at call time so tests can monkeypatch XDG_DATA_HOME."""
    return _xdg_path("XDG_DATA_HOME", Path.home() / ".local/share") / "tracepulse"


def default_codex_home() -> Path:
    raw = os.environ.get("CODEX_HOME")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".codex"


__all__ = [
    "config_home",
    "data_home",
    "default_codex_home",
]
