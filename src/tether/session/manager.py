"""Per-conversation execution mode, workspace and loop bookkeeping."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from tether.log_utils import log_context, log_event
from tether.paths import agent_workspace_path, ensure_dir
from tether.permissions.service import PermissionRequest
from tether.session.store import ConversationStore, ExecutionMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceContext:
    mode: ExecutionMode
    workspace_path: Path | None = None

    @property
    def has_workspace(self) -> bool:
        return self.workspace_path is not None


@dataclass
class LoopRuntime:
    """Mutable runtime for the single active loop of a conversation."""

    conversation_id: str
    loop_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    tool_call_count: int = 0
    user_stop_requested: bool = False
    pending_permission: PermissionRequest | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class SessionManager:
    """Resolves workspaces and enforces one active loop per conversation."""

    def __init__(self, store: ConversationStore, *, data_root: Path | None = None) -> None:
        self.store = store
        self.data_root = data_root
        self._agent_workspaces: Dict[str, Path] = {}
        self._runtimes: Dict[str, LoopRuntime] = {}

    async def resolve_workspace_context(self, conversation_id: str, model_id: str | None = None) -> WorkspaceContext:
        """Return the execution mode and working directory for a conversation.

        ``agent`` mode derives and persists a workspace on first use; the
        resolved path is remembered so it is written back exactly once.
        ``acp agent`` mode reads the per-model working-directory map and never
        writes, since the external agent owns that directory.
        """

        with log_context(conversation_id=conversation_id):
            try:
                settings = await self.store.get_settings(conversation_id)
            except Exception as exc:  # noqa: BLE001 - degrade to chat mode
                log_event(logger, "session.workspace.error", level=logging.WARNING, error=str(exc))
                return WorkspaceContext(mode="chat")

            mode = settings.chat_mode
            if mode == "acp agent":
                workdir = settings.acp_workdir_map.get(model_id or settings.model_id)
                if not workdir:
                    log_event(logger, "session.workspace.acp_missing", level=logging.DEBUG, model_id=model_id)
                return WorkspaceContext(mode=mode, workspace_path=Path(workdir) if workdir else None)

            if mode != "agent":
                return WorkspaceContext(mode="chat")

            cached = self._agent_workspaces.get(conversation_id)
            if cached is not None:
                return WorkspaceContext(mode="agent", workspace_path=cached)

            if settings.agent_workspace_path:
                path = Path(settings.agent_workspace_path)
            else:
                path = agent_workspace_path(conversation_id, self.data_root)
                try:
                    await self.store.update_settings(conversation_id, {"agent_workspace_path": str(path)})
                except Exception as exc:  # noqa: BLE001 - degrade to chat mode
                    log_event(logger, "session.workspace.persist_error", level=logging.WARNING, error=str(exc))
                    return WorkspaceContext(mode="chat")
                log_event(logger, "session.workspace.created", path=str(path))
            ensure_dir(path)
            self._agent_workspaces[conversation_id] = path
            return WorkspaceContext(mode="agent", workspace_path=path)

    async def resolve_function_calling(self, conversation_id: str, default: bool = True) -> bool:
        """Whether the conversation's model takes native tool definitions."""
        try:
            settings = await self.store.get_settings(conversation_id)
        except Exception as exc:  # noqa: BLE001 - fall back to the engine default
            log_event(
                logger,
                "session.function_calling.error",
                level=logging.WARNING,
                conversation_id=conversation_id,
                error=str(exc),
            )
            return default
        if settings.supports_function_call is None:
            return default
        return settings.supports_function_call

    def start_loop(self, conversation_id: str) -> LoopRuntime:
        """Cancel any in-flight loop for the conversation and register a new one."""

        previous = self._runtimes.get(conversation_id)
        if previous is not None:
            self._cancel(previous)
            log_event(logger, "loop.superseded", conversation_id=conversation_id, loop_id=previous.loop_id)
        runtime = LoopRuntime(conversation_id=conversation_id)
        self._runtimes[conversation_id] = runtime
        return runtime

    def get_runtime(self, conversation_id: str) -> LoopRuntime | None:
        return self._runtimes.get(conversation_id)

    def finish_loop(self, runtime: LoopRuntime) -> None:
        if self._runtimes.get(runtime.conversation_id) is runtime:
            del self._runtimes[runtime.conversation_id]

    def request_stop(self, conversation_id: str) -> bool:
        runtime = self._runtimes.get(conversation_id)
        if runtime is None:
            return False
        self._cancel(runtime)
        return True

    def increment_tool_call_count(self, conversation_id: str) -> int:
        runtime = self._runtimes.get(conversation_id)
        if runtime is None:
            return 0
        runtime.tool_call_count += 1
        return runtime.tool_call_count

    def set_pending_permission(self, conversation_id: str, request: PermissionRequest) -> None:
        runtime = self._runtimes.get(conversation_id)
        if runtime is not None:
            runtime.pending_permission = request

    @staticmethod
    def _cancel(runtime: LoopRuntime) -> None:
        runtime.user_stop_requested = True
        runtime.cancel_event.set()


__all__ = ["LoopRuntime", "SessionManager", "WorkspaceContext"]
