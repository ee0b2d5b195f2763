"""Conversation message shapes shared by the loop, builder and providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Literal, TypedDict

Role = Literal["system", "user", "assistant", "tool"]
ToolCallStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


class FunctionCall(TypedDict):
    name: str
    arguments: str


class ToolCallEntry(TypedDict):
    id: str
    type: Literal["function"]
    function: FunctionCall


class ChatMessage(TypedDict, total=False):
    role: Role
    content: str | None
    tool_calls: List[ToolCallEntry]
    tool_call_id: str
    name: str


@dataclass
class ToolCallRecord:
    """One proposed tool call, mutated while its arguments stream in."""

    id: str
    name: str
    arguments: str = ""
    response: Any = None
    status: ToolCallStatus = "pending"
    server_name: str | None = None


__all__ = ["ChatMessage", "FunctionCall", "Role", "ToolCallEntry", "ToolCallRecord", "ToolCallStatus"]
