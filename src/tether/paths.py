"""Application directory layout based on platformdirs."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "tether"


def _platform_dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=False)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return ensure_dir(Path(_platform_dirs().user_config_path))


def data_dir() -> Path:
    """Per-application data root holding sessions, offloads and workspaces."""
    return ensure_dir(Path(_platform_dirs().user_data_path))


def log_dir() -> Path:
    return ensure_dir(Path(_platform_dirs().user_log_path))


def sessions_dir(root: Path | None = None) -> Path:
    return ensure_dir((root or data_dir()) / "sessions")


def conversation_dir(conversation_id: str, root: Path | None = None) -> Path:
    return ensure_dir(sessions_dir(root) / safe_component(conversation_id))


def offload_path(conversation_id: str, tool_call_id: str, root: Path | None = None) -> Path:
    """Location of an offloaded tool response: sessions/<conv>/tool_<id>.offload."""
    return conversation_dir(conversation_id, root) / f"tool_{safe_component(tool_call_id)}.offload"


def agent_workspace_path(conversation_id: str, root: Path | None = None) -> Path:
    """Deterministic agent-mode workspace for a conversation (not created here)."""
    return (root or data_dir()) / "workspaces" / safe_component(conversation_id)


def safe_component(value: str) -> str:
    # ids come from models and remote agents; keep them inside the parent directory
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in value)
    return cleaned.strip(".") or "_"
