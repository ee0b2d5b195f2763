"""Client-hosted terminals for ACP agents.

Implements the terminal methods of
https://agentclientprotocol.com/protocol/terminals. Commands run inside the
session workspace and go through the command permission service first, the
same gate the built-in ``run_command`` tool uses.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Sequence

from acp import (
    CreateTerminalResponse,
    KillTerminalCommandResponse,
    ReleaseTerminalResponse,
    RequestError,
    TerminalOutputResponse,
    WaitForTerminalExitResponse,
)
from acp.schema import TerminalExitStatus

from tether.log_utils import log_event
from tether.permissions.service import CommandPermissionService, PermissionRequest
from tether.sink import EventSink
from tether.tools.workspace import TERMINAL_SNIPPET_CHARS

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT = 1024 * 1024
READ_CHUNK = 65536

# Receives the pending request and answers "once", "always" or "deny".
TerminalApproval = Callable[[PermissionRequest], Awaitable[str]]


@dataclass
class TerminalState:
    terminal_id: str
    session_id: str
    conversation_id: str
    command: str
    proc: asyncio.subprocess.Process
    output_limit: int
    output: bytearray = field(default_factory=bytearray)
    truncated: bool = False
    reader: asyncio.Task | None = None

    def text(self) -> str:
        # a multi-byte character cut by the limit is dropped, not mangled
        return self.output.decode("utf-8", errors="ignore")


def build_exit_status(returncode: int | None) -> TerminalExitStatus | None:
    if returncode is None:
        return None
    if returncode < 0:
        sig = abs(returncode)
        try:
            sig_name = signal.Signals(sig).name
        except ValueError:
            sig_name = f"SIG{sig}"
        return TerminalExitStatus(exit_code=None, signal=sig_name)
    return TerminalExitStatus(exit_code=returncode, signal=None)


def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill the whole process group so children of the shell go too."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


def command_line(command: str, args: Sequence[str] | None = None) -> str:
    return " ".join([command, *(args or [])]).strip()


class AcpTerminalManager:
    """Spawn, buffer, wait on, kill and release terminals for ACP sessions."""

    def __init__(
        self,
        *,
        permissions: CommandPermissionService | None = None,
        approval_callback: TerminalApproval | None = None,
        sink: EventSink | None = None,
        default_output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ) -> None:
        self.permissions = permissions or CommandPermissionService()
        self.approval_callback = approval_callback
        self.sink = sink
        self.default_output_limit = default_output_limit
        self._terminals: Dict[str, TerminalState] = {}

    async def _authorize(self, conversation_id: str, line: str) -> None:
        decision = self.permissions.check_permission(conversation_id, line)
        if decision.allowed:
            return
        if decision.reason == "invalid":
            raise RequestError.invalid_params({"message": "Empty command"})
        answer = "deny"
        if self.approval_callback is not None:
            answer = await self.approval_callback(
                PermissionRequest(
                    conversation_id=conversation_id,
                    tool_call_id="",
                    tool_name="terminal",
                    command=line,
                    signature=decision.risk.signature,
                    risk=decision.risk.level,
                    description=f"{decision.risk.level} risk command: {decision.risk.signature}",
                )
            )
        if answer in ("once", "always"):
            self.permissions.approve(conversation_id, decision.risk.signature, remember=answer == "always")
            if self.permissions.check_permission(conversation_id, line).allowed:
                return
        log_event(
            logger,
            "acp.terminal.denied",
            level=logging.WARNING,
            conversation_id=conversation_id,
            signature=decision.risk.signature,
            risk=decision.risk.level,
        )
        raise RequestError.invalid_params(
            {"message": "Permission denied", "command": line, "risk": decision.risk.level}
        )

    async def create_terminal(
        self,
        session_id: str,
        command: str,
        *,
        workspace_root: Path,
        conversation_id: str | None = None,
        args: Sequence[str] | None = None,
        cwd: str | None = None,
        env: Sequence[Any] | None = None,
        output_byte_limit: int | None = None,
    ) -> CreateTerminalResponse:
        line = command_line(command, args)
        conversation_id = conversation_id or session_id
        root = workspace_root.resolve()
        workdir = root
        if cwd:
            candidate = Path(cwd).expanduser()
            workdir = (candidate if candidate.is_absolute() else root / candidate).resolve()
            if not workdir.is_relative_to(root):
                raise RequestError.invalid_params({"message": "cwd is outside the workspace", "cwd": cwd})
        await self._authorize(conversation_id, line)

        environ = os.environ.copy()
        for variable in env or []:
            environ[variable.name] = variable.value

        try:
            proc = await asyncio.create_subprocess_shell(
                line,
                cwd=str(workdir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=environ,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise RequestError.internal_error({"message": str(exc), "command": line}) from None

        terminal_id = f"term_{uuid.uuid4().hex[:12]}"
        state = TerminalState(
            terminal_id=terminal_id,
            session_id=session_id,
            conversation_id=conversation_id,
            command=line,
            proc=proc,
            output_limit=output_byte_limit if output_byte_limit is not None else self.default_output_limit,
        )
        state.reader = asyncio.create_task(self._collect(state))
        self._terminals[terminal_id] = state
        log_event(logger, "acp.terminal.create", session_id=session_id, terminal_id=terminal_id, command=line)
        return CreateTerminalResponse(terminal_id=terminal_id)

    async def _collect(self, state: TerminalState) -> None:
        stream = state.proc.stdout
        if stream is not None:
            while True:
                chunk = await stream.read(READ_CHUNK)
                if not chunk:
                    break
                room = state.output_limit - len(state.output)
                if len(chunk) > room:
                    state.truncated = True
                    chunk = chunk[: max(room, 0)]
                state.output.extend(chunk)
        returncode = await state.proc.wait()
        log_event(logger, "acp.terminal.exit", terminal_id=state.terminal_id, returncode=returncode)
        if self.sink is not None:
            self.sink.publish(
                "terminal",
                conversation_id=state.conversation_id,
                terminal_id=state.terminal_id,
                command=state.command,
                output=state.text()[-TERMINAL_SNIPPET_CHARS:],
                exit_code=returncode,
            )

    def _get(self, terminal_id: str) -> TerminalState:
        state = self._terminals.get(terminal_id)
        if state is None:
            raise RequestError.resource_not_found(terminal_id)
        return state

    async def terminal_output(self, terminal_id: str) -> TerminalOutputResponse:
        state = self._get(terminal_id)
        # the exit status is reported only once all output has been buffered
        finished = state.reader is None or state.reader.done()
        return TerminalOutputResponse(
            output=state.text(),
            truncated=state.truncated,
            exit_status=build_exit_status(state.proc.returncode) if finished else None,
        )

    async def wait_for_terminal_exit(self, terminal_id: str) -> WaitForTerminalExitResponse:
        state = self._get(terminal_id)
        returncode = await state.proc.wait()
        if state.reader is not None:
            await asyncio.gather(state.reader, return_exceptions=True)
        exit_status = build_exit_status(returncode)
        return WaitForTerminalExitResponse(
            exit_code=exit_status.exit_code if exit_status else None,
            signal=exit_status.signal if exit_status else None,
        )

    async def kill_terminal(self, terminal_id: str) -> KillTerminalCommandResponse:
        """Kill the command but keep its output readable until release."""
        state = self._get(terminal_id)
        if state.proc.returncode is None:
            _kill(state.proc)
            log_event(logger, "acp.terminal.kill", terminal_id=terminal_id)
        return KillTerminalCommandResponse()

    async def release_terminal(self, terminal_id: str) -> ReleaseTerminalResponse:
        state = self._terminals.pop(terminal_id, None)
        if state is None:
            return ReleaseTerminalResponse()
        _kill(state.proc)
        await state.proc.wait()
        if state.reader is not None:
            await asyncio.gather(state.reader, return_exceptions=True)
        log_event(logger, "acp.terminal.release", terminal_id=terminal_id)
        return ReleaseTerminalResponse()

    async def release_session(self, session_id: str) -> None:
        for terminal_id in [t for t, state in self._terminals.items() if state.session_id == session_id]:
            await self.release_terminal(terminal_id)

    async def shutdown(self) -> None:
        for terminal_id in list(self._terminals):
            await self.release_terminal(terminal_id)


__all__ = ["AcpTerminalManager", "TerminalApproval", "TerminalState", "build_exit_status", "command_line"]
