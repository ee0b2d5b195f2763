"""Shared tool types and the backend interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Protocol, runtime_checkable

from pydantic_ai.tools import ToolDefinition

from tether.tools.registry import ToolSource


@dataclass(frozen=True)
class ToolSpec:
    """A tool definition as advertised to the model."""

    name: str
    description: str
    parameters: Dict[str, Any]
    source: ToolSource
    server_name: str | None = None

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters_json_schema=self.parameters)


@dataclass
class ToolInvocation:
    tool_call_id: str
    name: str
    arguments: Dict[str, Any]
    raw_arguments: str = ""
    conversation_id: str = ""
    workspace: Path | None = None


@dataclass
class ToolResult:
    """``content`` goes to the model; ``raw`` is the untouched backend payload."""

    content: Any
    raw: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ToolBackend(Protocol):
    source: ToolSource

    async def list_definitions(self) -> List[ToolSpec]: ...

    async def call(self, invocation: ToolInvocation) -> ToolResult: ...


__all__ = ["ToolBackend", "ToolInvocation", "ToolResult", "ToolSpec"]
