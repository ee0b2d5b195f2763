"""Provider that delegates a turn to an external agent speaking ACP over stdio.

The agent runs its own tools; its tool activity arrives as session updates
that the content mapper turns into stream events for display. The stop
reason is therefore never ``tool_use``: the loop does not execute anything
on the agent's behalf.
"""

from __future__ import annotations

import asyncio
import asyncio.subprocess as aio_subprocess
import contextlib
import logging
import os
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Sequence

from acp import PROTOCOL_VERSION, RequestError
from acp.core import connect_to_agent
from acp.schema import ClientCapabilities, FileSystemCapability, Implementation, TextContentBlock

from tether.acp.client import TetherAcpClient
from tether.errors import TetherError
from tether.events import ErrorEvent, StopEvent, StopReason, StreamEvent
from tether.log_utils import log_event
from tether.providers.base import ProviderRequest

logger = logging.getLogger(__name__)

STOP_REASONS: Dict[str, StopReason] = {
    "end_turn": "complete",
    "max_tokens": "max_tokens",
    "max_turn_requests": "stop_sequence",
    "refusal": "error",
    "cancelled": "error",
}


def map_stop_reason(stop_reason: str | None) -> StopReason:
    return STOP_REASONS.get(str(stop_reason or "end_turn"), "complete")


def _prompt_text(request: ProviderRequest) -> str:
    """The agent keeps its own history, so only the latest user text is sent."""
    for message in reversed(request.messages):
        if message.get("role") == "user" and message.get("content"):
            return str(message["content"])
    return ""


class AcpAgentProvider:
    """Spawns the agent lazily and keeps one ACP session per conversation."""

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        client: TetherAcpClient | None = None,
        env: Dict[str, str] | None = None,
        mcp_servers: List[Any] | None = None,
    ) -> None:
        self.command = command
        self.args = list(args)
        self.client = client or TetherAcpClient()
        self.env = env
        self.mcp_servers = list(mcp_servers or [])
        self._proc: asyncio.subprocess.Process | None = None
        self._conn: Any = None
        self._sessions: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def _connect(self) -> Any:
        async with self._lock:
            if self._conn is not None and self._proc is not None and self._proc.returncode is None:
                return self._conn
            proc = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=aio_subprocess.PIPE,
                stdout=aio_subprocess.PIPE,
                env={**os.environ, **self.env} if self.env else None,
            )
            if proc.stdin is None or proc.stdout is None:
                raise TetherError("Agent process does not expose stdio pipes")
            conn = connect_to_agent(self.client, proc.stdin, proc.stdout)
            init_resp = await conn.initialize(
                protocol_version=PROTOCOL_VERSION,
                client_capabilities=ClientCapabilities(
                    fs=FileSystemCapability(read_text_file=True, write_text_file=True),
                    terminal=True,
                ),
                client_info=Implementation(name="tether", title="Tether", version="0.1.0"),
            )
            if init_resp.protocol_version != PROTOCOL_VERSION:
                proc.terminate()
                raise TetherError(f"Incompatible ACP protocol version from agent: {init_resp.protocol_version}")
            log_event(logger, "acp.connect", command=self.command, pid=proc.pid)
            self._proc, self._conn = proc, conn
            self._sessions.clear()
            return conn

    async def _session(self, conn: Any, conversation_id: str, workspace: str) -> str:
        session_id = self._sessions.get(conversation_id)
        if session_id is None:
            session = await conn.new_session(cwd=workspace, mcp_servers=self.mcp_servers)
            session_id = session.session_id
            self._sessions[conversation_id] = session_id
            log_event(logger, "acp.session.new", conversation_id=conversation_id, session_id=session_id, cwd=workspace)
        self.client.register_session(session_id, Path(workspace), conversation_id)
        return session_id

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        workspace = request.workspace or os.getcwd()
        try:
            conn = await self._connect()
            session_id = await self._session(conn, request.conversation_id, workspace)
        except (OSError, RequestError, TetherError) as exc:
            log_event(logger, "acp.connect.error", level=logging.WARNING, error=str(exc))
            yield ErrorEvent(f"Failed to start ACP agent: {exc}")
            return

        queue = self.client.begin_turn(session_id)
        prompt_task = asyncio.ensure_future(
            conn.prompt(prompt=[TextContentBlock(type="text", text=_prompt_text(request))], session_id=session_id)
        )
        cancel_wait = asyncio.ensure_future(request.cancel_event.wait())
        getter: asyncio.Future[Any] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _pending = await asyncio.wait(
                    {getter, prompt_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter in done:
                    yield getter.result()
                    continue
                getter.cancel()
                if cancel_wait in done:
                    return
                while not queue.empty():
                    yield queue.get_nowait()
                break

            try:
                response = prompt_task.result()
            except RequestError as exc:
                log_event(logger, "acp.prompt.error", level=logging.WARNING, session_id=session_id, error=str(exc))
                yield ErrorEvent(str(exc) or "ACP prompt failed")
                return
            stop_reason = getattr(response, "stop_reason", None)
            log_event(logger, "acp.prompt.end", session_id=session_id, stop_reason=stop_reason)
            if stop_reason in ("refusal", "cancelled"):
                yield ErrorEvent(f"Agent stopped: {stop_reason}")
            yield StopEvent(map_stop_reason(stop_reason))
        finally:
            cancel_wait.cancel()
            if getter is not None:
                getter.cancel()
            if not prompt_task.done():
                await self.cancel(request.conversation_id)
                prompt_task.cancel()
                await asyncio.gather(prompt_task, return_exceptions=True)

    async def cancel(self, conversation_id: str) -> None:
        session_id = self._sessions.get(conversation_id)
        if session_id is None or self._conn is None:
            return
        self.client.mark_cancelled(session_id)
        log_event(logger, "acp.cancel", session_id=session_id)
        with contextlib.suppress(RequestError, ConnectionError):
            await self._conn.cancel(session_id=session_id)

    async def close(self) -> None:
        for session_id in self._sessions.values():
            await self.client.unregister_session(session_id)
        self._sessions.clear()
        conn, self._conn = self._conn, None
        if conn is not None:
            with contextlib.suppress(Exception):
                await conn.close()
        proc, self._proc = self._proc, None
        if proc is not None and proc.returncode is None:
            proc.terminate()
            with contextlib.suppress(ProcessLookupError):
                await proc.wait()


__all__ = ["AcpAgentProvider", "STOP_REASONS", "map_stop_reason"]
