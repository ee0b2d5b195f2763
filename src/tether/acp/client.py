"""Client side of an ACP connection to an external coding agent."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Sequence

from acp import (
    Client,
    CreateTerminalResponse,
    KillTerminalCommandResponse,
    ReadTextFileResponse,
    ReleaseTerminalResponse,
    RequestError,
    RequestPermissionResponse,
    SessionNotification,
    TerminalOutputResponse,
    WaitForTerminalExitResponse,
    WriteTextFileResponse,
)
from acp.schema import AllowedOutcome, DeniedOutcome

from tether.acp.filesystem import AcpFsHandler
from tether.acp.mapper import AcpContentMapper
from tether.acp.terminal import AcpTerminalManager
from tether.config import DEFAULT_MAX_READ_SIZE
from tether.events import StreamEvent
from tether.log_utils import log_event
from tether.sink import EventSink

logger = logging.getLogger(__name__)

# Receives (session_id, tool_call, options) and returns the chosen option id,
# or None to deny.
PermissionCallback = Callable[[str, Any, Sequence[Any]], Awaitable[str | None]]


class TetherAcpClient(Client):
    """Feeds mapped session updates into per-session event queues.

    File-system requests are served by an ``AcpFsHandler`` bound to the
    session's workspace; terminal requests by an ``AcpTerminalManager`` that
    runs commands in that workspace behind the command permission gate.
    """

    def __init__(
        self,
        *,
        mapper: AcpContentMapper | None = None,
        permission_callback: PermissionCallback | None = None,
        sink: EventSink | None = None,
        max_read_size: int = DEFAULT_MAX_READ_SIZE,
        terminals: AcpTerminalManager | None = None,
    ) -> None:
        self.mapper = mapper or AcpContentMapper()
        self.terminals = terminals or AcpTerminalManager(sink=sink)
        self.permission_callback = permission_callback
        self.sink = sink
        self.max_read_size = max_read_size
        self._queues: Dict[str, asyncio.Queue[StreamEvent]] = {}
        self._fs: Dict[str, AcpFsHandler] = {}
        self._conversations: Dict[str, str] = {}
        self._cancelled: set[str] = set()

    def register_session(
        self, session_id: str, workspace: Path | str, conversation_id: str | None = None
    ) -> asyncio.Queue[StreamEvent]:
        self._fs[session_id] = AcpFsHandler(workspace, max_read_size=self.max_read_size, sink=self.sink)
        if conversation_id:
            self._conversations[session_id] = conversation_id
        self._cancelled.discard(session_id)
        return self._queues.setdefault(session_id, asyncio.Queue())

    async def unregister_session(self, session_id: str) -> None:
        await self.terminals.release_session(session_id)
        self._queues.pop(session_id, None)
        self._fs.pop(session_id, None)
        self._conversations.pop(session_id, None)
        self._cancelled.discard(session_id)
        self.mapper.clear_session(session_id)

    def mark_cancelled(self, session_id: str) -> None:
        self._cancelled.add(session_id)
        self.mapper.clear_session(session_id)

    def begin_turn(self, session_id: str) -> asyncio.Queue[StreamEvent]:
        """Give the session an empty queue before a new prompt.

        Updates still queued from an earlier turn (late chunks after a cancel
        or after the prompt response) are dropped with the old queue.
        """

        stale = self._queues.get(session_id)
        if stale is not None and not stale.empty():
            log_event(
                logger, "acp.session.stale_updates", level=logging.DEBUG, session_id=session_id, count=stale.qsize()
            )
        self.mapper.clear_session(session_id)
        self._cancelled.discard(session_id)
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._queues[session_id] = queue
        return queue

    def events(self, session_id: str) -> asyncio.Queue[StreamEvent]:
        return self._queues.setdefault(session_id, asyncio.Queue())

    def _fs_handler(self, session_id: str) -> AcpFsHandler:
        handler = self._fs.get(session_id)
        if handler is None:
            raise RequestError.invalid_params({"message": "Unknown session", "session_id": session_id})
        return handler

    async def session_update(self, session_id: str, update: Any, **_: Any) -> None:
        if isinstance(update, SessionNotification):
            mapped = self.mapper.map(update)
        else:
            mapped = self.mapper.map_update(session_id, update)
        queue = self.events(session_id)
        for event in mapped.events:
            queue.put_nowait(event)
        if mapped.plan is not None and self.sink is not None:
            self.sink.publish(
                "plan",
                session_id=session_id,
                entries=[{"content": e.content, "status": e.status, "priority": e.priority} for e in mapped.plan],
            )

    async def request_permission(
        self, options: Sequence[Any], session_id: str, tool_call: Any, **_: Any
    ) -> RequestPermissionResponse:
        if session_id in self._cancelled or self.permission_callback is None:
            log_event(logger, "acp.permission.denied", session_id=session_id, reason="no_handler")
            return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
        selection = await self.permission_callback(session_id, tool_call, options)
        log_event(
            logger,
            "acp.permission.response",
            session_id=session_id,
            tool=getattr(tool_call, "title", None),
            selection=selection,
        )
        if selection is None:
            return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
        return RequestPermissionResponse(outcome=AllowedOutcome(option_id=selection, outcome="selected"))

    async def read_text_file(
        self, path: str, session_id: str, limit: int | None = None, line: int | None = None, **_: Any
    ) -> ReadTextFileResponse:
        return await self._fs_handler(session_id).read_text_file(path, line=line, limit=limit)

    async def write_text_file(self, content: str, path: str, session_id: str, **_: Any) -> WriteTextFileResponse:
        return await self._fs_handler(session_id).write_text_file(path, content)

    async def create_terminal(
        self,
        command: str,
        session_id: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: list[Any] | None = None,
        output_byte_limit: int | None = None,
        **_: Any,
    ) -> CreateTerminalResponse:
        return await self.terminals.create_terminal(
            session_id,
            command,
            workspace_root=self._fs_handler(session_id).workspace_root,
            conversation_id=self._conversations.get(session_id),
            args=args,
            cwd=cwd,
            env=env,
            output_byte_limit=output_byte_limit,
        )

    async def terminal_output(self, session_id: str, terminal_id: str, **_: Any) -> TerminalOutputResponse:
        return await self.terminals.terminal_output(terminal_id)

    async def release_terminal(self, session_id: str, terminal_id: str, **_: Any) -> ReleaseTerminalResponse:
        return await self.terminals.release_terminal(terminal_id)

    async def wait_for_terminal_exit(
        self, session_id: str, terminal_id: str, **_: Any
    ) -> WaitForTerminalExitResponse:
        return await self.terminals.wait_for_terminal_exit(terminal_id)

    async def kill_terminal(self, session_id: str, terminal_id: str, **_: Any) -> KillTerminalCommandResponse:
        return await self.terminals.kill_terminal(terminal_id)

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        raise RequestError.method_not_found(method)

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        return None

    def on_connect(self, *_: Any, **__: Any) -> None:
        return None


__all__ = ["PermissionCallback", "TetherAcpClient"]
