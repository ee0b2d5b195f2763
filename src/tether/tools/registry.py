"""Tool registry and capability-based routing.

The registry maps a tool name to the backend that advertises it. Routing
never fails: names the registry has not seen resolve to the MCP target, and
the backend reports "tool not found" when the call actually happens.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Literal

from tether.errors import ToolRegistrationConflict
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

PermissionType = Literal["command"]


class ToolSource(str, enum.Enum):
    MCP = "mcp"
    AGENT = "agent"
    BROWSER = "browser"
    BUILTIN = "builtin"


DEFAULT_TARGET = ToolSource.MCP

# Lower value wins when two backends advertise the same name.
SOURCE_PRIORITY: Dict[ToolSource, int] = {
    ToolSource.AGENT: 0,
    ToolSource.BROWSER: 1,
    ToolSource.BUILTIN: 2,
    ToolSource.MCP: 3,
}

COMMAND_TOOLS = frozenset({"run_command", "execute_command", "bash", "shell"})


@dataclass(frozen=True)
class ToolEntry:
    name: str
    source: ToolSource
    permission_type: PermissionType | None = None
    server_name: str | None = None


@dataclass(frozen=True)
class ToolRoute:
    target: ToolSource
    permission_type: PermissionType | None = None
    server_name: str | None = None


class ToolRegistry:
    """In-memory name -> entry mapping; safe for concurrent reads."""

    def __init__(self) -> None:
        self._entries: Dict[str, ToolEntry] = {}

    def register(self, entry: ToolEntry) -> None:
        existing = self._entries.get(entry.name)
        if existing is not None and existing.source is not entry.source:
            raise ToolRegistrationConflict(
                f"Tool {entry.name!r} already registered by {existing.source.value}, refusing {entry.source.value}"
            )
        self._entries[entry.name] = entry

    def get(self, name: str) -> ToolEntry | None:
        return self._entries.get(name)

    def list(self) -> List[ToolEntry]:  # noqa: A003 - registry API name
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def resolve_tool_route(self, name: str) -> ToolRoute:
        entry = self._entries.get(name)
        if entry is None:
            log_event(logger, "tool.route.default", level=logging.DEBUG, tool=name, target=DEFAULT_TARGET.value)
            return ToolRoute(target=DEFAULT_TARGET, permission_type=permission_type_for(name))
        return ToolRoute(
            target=entry.source,
            permission_type=entry.permission_type or permission_type_for(name),
            server_name=entry.server_name,
        )


def permission_type_for(name: str) -> PermissionType | None:
    return "command" if name in COMMAND_TOOLS else None


__all__ = [
    "COMMAND_TOOLS",
    "DEFAULT_TARGET",
    "PermissionType",
    "SOURCE_PRIORITY",
    "ToolEntry",
    "ToolRegistry",
    "ToolRoute",
    "ToolSource",
    "permission_type_for",
]
