"""CLI types."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console

from tracepulse.container import ApplicationContainer, create_container, shutdown_container


@dataclass
class AppEnv:
    console: Console
    config_path: Path | None = None
    overrides: dict[str, Any] = field(default_factory=dict)
    _container: ApplicationContainer | None = None

    @property
    def container(self) -> ApplicationContainer:
        """Build the container lazily so ``--help`` never touches the database."""
        if self._container is None:
            from tracepulse.config import load_settings

            settings = load_settings(self.config_path, **self.overrides)
            self._container = create_container(settings=settings)
        return self._container

    def close(self) -> None:
        if self._container is not None:
            shutdown_container(self._container)
            self._container = None
