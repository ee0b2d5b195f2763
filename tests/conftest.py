from __future__ import annotations

from pathlib import Path

import pytest

from tether.config import EngineConfig


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Force tests to use a temporary HOME/XDG dirs so sessions and offloads stay local."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(base / ".config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(base / ".local" / "state"))
    monkeypatch.setenv("XDG_DATA_HOME", str(base / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(base / ".cache"))
    monkeypatch.setattr(Path, "home", lambda: base)
    for name in ("TETHER_DATA_DIR", "TETHER_OFFLOAD_THRESHOLD", "TETHER_MAX_TOOL_CALLS", "TETHER_SAFE_COMMANDS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(data_root=tmp_path / "data")
