"""Agent-mode tools that operate inside a conversation's workspace."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict

import pathspec

from tether.errors import ToolExecutionError
from tether.sink import EventSink
from tether.tools.args import ListFilesArgs, ReadFileArgs, RunCommandArgs, WriteFileArgs
from tether.tools.base import ToolInvocation
from tether.tools.functions import FunctionToolBackend
from tether.tools.registry import ToolSource
from tether.tools.run_command import run_command

MAX_LIST_ENTRIES = 500
TERMINAL_SNIPPET_CHARS = 2000

_DEFAULT_IGNORES = {
    ".git",
    ".hg",
    ".svn",
    ".cache",
    ".pytest_cache",
    ".mypy_cache",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
}


def _workspace(invocation: ToolInvocation) -> Path:
    if invocation.workspace is None:
        raise ToolExecutionError("No workspace is available for this conversation")
    return invocation.workspace.expanduser().resolve()


def resolve_in_workspace(workspace: Path, target: str) -> Path:
    path = Path(target).expanduser()
    if not path.is_absolute():
        path = workspace / path
    resolved = path.resolve()
    if not resolved.is_relative_to(workspace):
        raise ToolExecutionError(f"Path '{target}' is outside the workspace")
    return resolved


async def read_file(invocation: ToolInvocation, path: str, line: int | None = None, limit: int | None = None) -> dict:
    """Read a text file from the workspace, optionally a line range."""
    target = resolve_in_workspace(_workspace(invocation), path)
    if not target.is_file():
        return {"content": None, "error": f"File '{path}' does not exist."}
    lines = target.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
    start = (line or 1) - 1
    end = start + limit if limit else len(lines)
    return {"content": "".join(lines[start:end]), "error": None, "total_lines": len(lines)}


async def write_file(invocation: ToolInvocation, path: str, content: str) -> dict:
    """Write a text file in the workspace, creating parent directories."""
    target = resolve_in_workspace(_workspace(invocation), path)
    if target.is_dir():
        return {"content": None, "error": f"'{path}' is a directory."}
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return {"content": f"Wrote {len(content)} characters to {path}", "error": None, "path": str(target)}


def _gitignore_matcher(root: Path) -> Callable[[Path, bool], bool]:
    gitignore = root / ".gitignore"
    lines = gitignore.read_text(encoding="utf-8").splitlines() if gitignore.is_file() else []
    spec = pathspec.PathSpec.from_lines("gitwildmatch", lines) if lines else None

    def _ignored(rel: Path, is_dir: bool) -> bool:
        if any(part in _DEFAULT_IGNORES for part in rel.parts):
            return True
        return bool(spec and spec.match_file(str(rel) + ("/" if is_dir else "")))

    return _ignored


async def list_files(invocation: ToolInvocation, directory: str = ".", recursive: bool = False) -> dict:
    """List files and directories in the workspace (honors .gitignore)."""
    workspace = _workspace(invocation)
    base = resolve_in_workspace(workspace, directory)
    if not base.is_dir():
        return {"content": None, "error": f"Directory '{directory}' does not exist."}

    ignored = _gitignore_matcher(workspace)
    items: list[str] = []
    if recursive:
        for root, dirs, files in os.walk(base):
            rel_root = Path(root).relative_to(base)
            dirs[:] = [d for d in dirs if not ignored(rel_root / d, True)]
            items.extend(f"{rel_root / d} [dir]" for d in dirs)
            items.extend(f"{rel_root / f} [file]" for f in files if not ignored(rel_root / f, False))
    else:
        for entry in base.iterdir():
            if not ignored(Path(entry.name), entry.is_dir()):
                items.append(f"{entry.name} [{'dir' if entry.is_dir() else 'file'}]")

    items = sorted(item.removeprefix("./") for item in items)
    truncated = len(items) > MAX_LIST_ENTRIES
    listing = "\n".join(items[:MAX_LIST_ENTRIES])
    if truncated:
        listing += "\n[truncated]"
    return {"content": listing or "(empty)", "error": None, "truncated": truncated}


class AgentToolBackend(FunctionToolBackend):
    """File and shell tools bound to the conversation workspace.

    Permission gating for ``run_command`` happens before the call reaches
    this backend; here the command simply runs in the workspace.
    """

    source = ToolSource.AGENT

    def __init__(self, *, sink: EventSink | None = None, command_timeout: float | None = None) -> None:
        super().__init__()
        self.sink = sink
        self.command_timeout = command_timeout
        self.register("read_file", read_file, args_model=ReadFileArgs, description="Read a text file from the workspace")
        self.register(
            "write_file", write_file, args_model=WriteFileArgs, description="Create or overwrite a file in the workspace"
        )
        self.register(
            "list_files", list_files, args_model=ListFilesArgs, description="List files in a workspace directory"
        )
        self.register(
            "run_command",
            self._run_command,
            args_model=RunCommandArgs,
            description="Run a shell command in the workspace (may require approval)",
        )

    async def _run_command(self, invocation: ToolInvocation, command: str, timeout: float | None = None) -> Dict[str, Any]:
        result = await run_command(command, cwd=_workspace(invocation), timeout=timeout or self.command_timeout)
        if self.sink is not None:
            self.sink.publish(
                "terminal",
                conversation_id=invocation.conversation_id,
                tool_call_id=invocation.tool_call_id,
                command=command,
                output=str(result.get("content") or result.get("error") or "")[-TERMINAL_SNIPPET_CHARS:],
            )
        return result


__all__ = ["AgentToolBackend", "list_files", "read_file", "resolve_in_workspace", "write_file"]
