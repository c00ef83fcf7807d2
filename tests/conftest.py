import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dependency_injector import providers

from tests.helpers import FakeClock
from tracepulse.config import Settings
from tracepulse.container import create_container, shutdown_container
from tracepulse.storage.backend import SQLiteBackend
from tracepulse.storage.ingest_state import ChangeTrackingStore


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the real config, data and Codex directories."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    monkeypatch.setenv("CODEX_HOME", str(tmp_path / "default-codex"))
    for name in list(os.environ):
        if name.startswith("TRACEPULSE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def codex_home(tmp_path):
    home = tmp_path / "codex"
    (home / "sessions").mkdir(parents=True)
    return home


@pytest.fixture
def sessions_dir(codex_home):
    return codex_home / "sessions"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tracepulse.db"


@pytest.fixture
def settings(codex_home, db_path):
    return Settings(codex_home=codex_home, db_path=db_path, debounce_ms=50)


@pytest.fixture
def backend(db_path):
    backend = SQLiteBackend(db_path)
    yield backend
    backend.close()


@pytest.fixture
def tracking(backend, fake_clock):
    return ChangeTrackingStore(backend, clock=fake_clock)


@pytest.fixture
def container(settings, fake_clock):
    container = create_container(settings=settings)
    container.clock.override(providers.Object(fake_clock))
    yield container
    shutdown_container(container)
