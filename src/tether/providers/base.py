"""Model provider interface consumed by the agent loop."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Protocol, Sequence

from tether.events import StreamEvent
from tether.messages import ChatMessage
from tether.tools.base import ToolSpec


@dataclass
class ProviderRequest:
    conversation_id: str
    messages: List[ChatMessage]
    tools: Sequence[ToolSpec] = ()
    system_prompt: str | None = None
    workspace: str | None = None
    model_id: str | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    # off: tools are described in the system prompt, not sent as definitions
    supports_function_call: bool = True


class Provider(Protocol):
    """Streams one model response as ``tether.events`` stream events.

    A response ends with a ``StopEvent``; ``reason="tool_use"`` asks the loop
    to execute the tool calls that were streamed.
    """

    def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]: ...


__all__ = ["Provider", "ProviderRequest"]
