"""Sandboxed ``fs/read_text_file`` and ``fs/write_text_file`` handling.

Every path is resolved against a registered workspace root and rejected
before any I/O when it escapes that root. See
https://agentclientprotocol.com/protocol/file-system for the request shapes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from acp import ReadTextFileResponse, RequestError, WriteTextFileResponse

from tether.config import DEFAULT_MAX_READ_SIZE
from tether.log_utils import log_event
from tether.sink import EventSink

logger = logging.getLogger(__name__)


class AcpFsHandler:
    """Serve file-system requests from an external agent inside one workspace."""

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        max_read_size: int = DEFAULT_MAX_READ_SIZE,
        sink: EventSink | None = None,
    ) -> None:
        self.workspace_root = Path(workspace_root).expanduser().resolve()
        self.max_read_size = max_read_size
        self.sink = sink

    def resolve(self, path_str: str) -> Path:
        path = Path(path_str).expanduser()
        if not path.is_absolute():
            path = self.workspace_root / path
        resolved = path.resolve()
        if not resolved.is_relative_to(self.workspace_root):
            log_event(logger, "acp.fs.escape", level=logging.WARNING, path=path_str, root=str(self.workspace_root))
            raise RequestError.invalid_params(
                {"message": "Path is outside the workspace", "path": path_str}
            )
        return resolved

    async def read_text_file(
        self,
        path: str,
        *,
        line: int | None = None,
        limit: int | None = None,
    ) -> ReadTextFileResponse:
        """Read a file, honoring a 1-based ``line`` offset and a ``limit`` in lines."""

        target = self.resolve(path)
        try:
            size = target.stat().st_size
            if size > self.max_read_size:
                raise RequestError.invalid_params(
                    {"message": "File too large", "path": path, "size": size, "max_size": self.max_read_size}
                )
            text = target.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            raise RequestError.resource_not_found(str(target)) from None
        except PermissionError:
            raise RequestError.invalid_params({"message": "Permission denied", "path": path}) from None
        except IsADirectoryError:
            raise RequestError.invalid_params({"message": "Path is a directory", "path": path}) from None

        if line is not None or limit is not None:
            lines = text.splitlines(keepends=True)
            start = max((line or 1) - 1, 0)
            end = start + limit if limit is not None else len(lines)
            text = "".join(lines[start:end])
        log_event(logger, "acp.fs.read", level=logging.DEBUG, path=str(target), chars=len(text))
        return ReadTextFileResponse(content=text)

    async def write_text_file(self, path: str, content: str) -> WriteTextFileResponse:
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except PermissionError:
            raise RequestError.invalid_params({"message": "Permission denied", "path": path}) from None
        log_event(logger, "acp.fs.write", path=str(target), chars=len(content))
        if self.sink is not None:
            self.sink.publish("file_change", path=str(target), workspace=str(self.workspace_root))
        return WriteTextFileResponse()


__all__ = ["AcpFsHandler"]
