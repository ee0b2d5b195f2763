"""Aggregate tool backends into one definition set and route calls to them."""

from __future__ import annotations

import json
import logging
from typing import Dict, Iterable, List, Sequence

from tether.errors import ToolNotFoundError, ToolRegistrationConflict
from tether.log_utils import log_event
from tether.permissions.service import CommandPermissionService
from tether.session.store import ExecutionMode
from tether.tools.base import ToolBackend, ToolInvocation, ToolResult, ToolSpec
from tether.tools.registry import SOURCE_PRIORITY, ToolEntry, ToolRegistry, ToolSource, permission_type_for

logger = logging.getLogger(__name__)

# Sources that are only offered when the conversation has a workspace.
WORKSPACE_SOURCES = frozenset({ToolSource.AGENT, ToolSource.BROWSER})

OFFLOAD_PROMPT = (
    "Large tool outputs are saved to files and replaced with a preview. "
    "When a tool result says 'Full output saved to: <path>', read that file "
    "with read_file (using line and limit) if you need more than the preview."
)

FUNCTION_CALL_PROMPT = """You can call external tools. They are listed as a JSON array in <tool_list>:
<tool_list>
{tool_list}
</tool_list>
To call a tool, reply with one <function_call> block per call and nothing else:
<function_call>
{{"function_call": {{"name": "tool_name", "arguments": {{"param": "value"}}}}}}
</function_call>
The name must match a tool in <tool_list> exactly and the arguments must be a JSON object.
Never write <function_call> tags for any other purpose. Answer directly when no tool is needed.
Tool results come back inside <function_call> blocks holding a "function_call_record"."""


class ToolManager:
    """Owns the backends and the registry snapshot built from them."""

    def __init__(
        self,
        backends: Iterable[ToolBackend],
        permission_service: CommandPermissionService | None = None,
        registry: ToolRegistry | None = None,
    ) -> None:
        self.backends: Dict[ToolSource, ToolBackend] = {}
        for backend in backends:
            self.backends[backend.source] = backend
        self.permission_service = permission_service or CommandPermissionService()
        self.registry = registry or ToolRegistry()
        self._definitions: Dict[str, ToolSpec] = {}

    async def get_all_tool_definitions(
        self, mode: ExecutionMode = "chat", enabled_tools: Sequence[str] | None = None
    ) -> List[ToolSpec]:
        """Collect definitions from every backend usable in ``mode``.

        MCP definitions come first. When two sources advertise the same name
        the higher-priority source keeps it and the other is dropped.
        ``enabled_tools`` filters MCP and builtin tools; workspace tools are
        always offered in agent mode.
        """

        chosen: Dict[str, ToolSpec] = {}
        ordered = sorted(self.backends.values(), key=lambda b: b.source is not ToolSource.MCP)
        for backend in ordered:
            if mode == "chat" and backend.source in WORKSPACE_SOURCES:
                continue
            for spec in await backend.list_definitions():
                if (
                    enabled_tools is not None
                    and backend.source not in WORKSPACE_SOURCES
                    and spec.name not in enabled_tools
                ):
                    continue
                existing = chosen.get(spec.name)
                if existing is None:
                    chosen[spec.name] = spec
                    continue
                winner = min(existing, spec, key=lambda s: SOURCE_PRIORITY[s.source])
                loser = spec if winner is existing else existing
                log_event(
                    logger,
                    "tool.conflict",
                    level=logging.WARNING,
                    tool=spec.name,
                    kept=winner.source.value,
                    dropped=loser.source.value,
                )
                chosen[spec.name] = winner

        self.registry.clear()
        for spec in chosen.values():
            try:
                self.registry.register(
                    ToolEntry(
                        name=spec.name,
                        source=spec.source,
                        permission_type=permission_type_for(spec.name),
                        server_name=spec.server_name,
                    )
                )
            except ToolRegistrationConflict:
                log_event(logger, "tool.register.conflict", level=logging.WARNING, tool=spec.name)
        self._definitions = chosen
        log_event(logger, "tool.definitions", level=logging.DEBUG, mode=mode, count=len(chosen))
        return list(chosen.values())

    def has_definition(self, name: str) -> bool:
        return name in self._definitions

    def get_definition(self, name: str) -> ToolSpec | None:
        return self._definitions.get(name)

    async def call_tool(self, invocation: ToolInvocation) -> ToolResult:
        """Route ``invocation`` to its backend.

        Command tools are gated first; an unapproved command raises
        ``CommandPermissionRequiredError`` before anything runs.
        """

        route = self.registry.resolve_tool_route(invocation.name)
        if route.permission_type == "command":
            self.permission_service.require_permission(
                invocation.conversation_id,
                str(invocation.arguments.get("command", "")),
                tool_call_id=invocation.tool_call_id,
                tool_name=invocation.name,
            )
        backend = self.backends.get(route.target)
        if backend is None:
            raise ToolNotFoundError(invocation.name)
        log_event(
            logger,
            "tool.call.dispatch",
            level=logging.DEBUG,
            tool=invocation.name,
            tool_call_id=invocation.tool_call_id,
            target=route.target.value,
            server=route.server_name,
        )
        result = await backend.call(invocation)
        if route.server_name and "server_name" not in result.metadata:
            result.metadata["server_name"] = route.server_name
        return result

    def build_tool_system_prompt(self, base_prompt: str | None = None, supports_function_call: bool = True) -> str:
        """System prompt text describing the available tools.

        Models without function calling never see tool definitions, so the
        full list goes into the prompt together with the call format.
        """
        lines = [base_prompt.strip()] if base_prompt else []
        if not self._definitions:
            return "\n".join(lines)
        if supports_function_call:
            lines.append("Available tools:")
            for spec in self._definitions.values():
                summary = spec.description.splitlines()[0] if spec.description else ""
                lines.append(f"- {spec.name}: {summary}" if summary else f"- {spec.name}")
        else:
            tool_list = [
                {"name": spec.name, "description": spec.description, "parameters": spec.parameters}
                for spec in self._definitions.values()
            ]
            lines.append(FUNCTION_CALL_PROMPT.format(tool_list=json.dumps(tool_list, ensure_ascii=False)))
        lines.append(OFFLOAD_PROMPT)
        return "\n".join(lines)


__all__ = ["FUNCTION_CALL_PROMPT", "OFFLOAD_PROMPT", "ToolManager", "WORKSPACE_SOURCES"]
