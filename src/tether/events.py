"""Stream and loop event payloads.

Providers (model streams, external ACP agents) produce *stream events*; the
agent loop turns them into *loop events* for whoever consumes a generation
pass (CLI renderer, UI bridge, persistence).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Union

StopReason = Literal["tool_use", "max_tokens", "stop_sequence", "error", "complete"]
ToolCallPhase = Literal["start", "update", "running", "end", "error", "permission-required"]


@dataclass(frozen=True)
class TextEvent:
    kind: ClassVar[str] = "text"
    content: str


@dataclass(frozen=True)
class ReasoningEvent:
    kind: ClassVar[str] = "reasoning"
    content: str


@dataclass(frozen=True)
class ToolCallStartEvent:
    kind: ClassVar[str] = "tool_call_start"
    tool_call_id: str
    tool_call_name: str


@dataclass(frozen=True)
class ToolCallChunkEvent:
    """One argument fragment; consumers concatenate fragments themselves."""

    kind: ClassVar[str] = "tool_call_chunk"
    tool_call_id: str
    fragment: str


@dataclass(frozen=True)
class ToolCallEndEvent:
    kind: ClassVar[str] = "tool_call_end"
    tool_call_id: str
    complete_arguments: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[str] = "error"
    message: str


@dataclass(frozen=True)
class UsageEvent:
    kind: ClassVar[str] = "usage"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class StopEvent:
    kind: ClassVar[str] = "stop"
    reason: StopReason = "complete"


@dataclass(frozen=True)
class ImageDataEvent:
    kind: ClassVar[str] = "image_data"
    data: str
    mime_type: str = "image/png"


@dataclass(frozen=True)
class RateLimitEvent:
    kind: ClassVar[str] = "rate_limit"
    provider_id: str = ""
    queue_length: int = 0
    retry_after_s: float | None = None


StreamEvent = Union[
    TextEvent,
    ReasoningEvent,
    ToolCallStartEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ErrorEvent,
    UsageEvent,
    StopEvent,
    ImageDataEvent,
    RateLimitEvent,
]


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, event: UsageEvent) -> None:
        self.prompt_tokens += event.prompt_tokens
        self.completion_tokens += event.completion_tokens
        self.total_tokens += event.total_tokens or (event.prompt_tokens + event.completion_tokens)


@dataclass
class ResponseData:
    """Payload of a ``response`` loop event; only the relevant fields are set."""

    conversation_id: str
    content: str | None = None
    reasoning_content: str | None = None
    tool_call: ToolCallPhase | None = None
    tool_call_id: str | None = None
    tool_call_name: str | None = None
    tool_call_params: str | None = None
    tool_call_response: str | None = None
    tool_call_response_raw: Any = None
    tool_call_server_name: str | None = None
    permission_request: Any = None
    image_data: ImageDataEvent | None = None
    rate_limit: RateLimitEvent | None = None
    total_usage: Usage | None = None
    maximum_tool_calls_reached: bool = False


@dataclass
class ErrorData:
    conversation_id: str
    error: str


@dataclass
class EndData:
    conversation_id: str
    user_stop: bool = False


@dataclass
class LoopEvent:
    type: Literal["response", "error", "end"]
    data: Union[ResponseData, ErrorData, EndData]

    @classmethod
    def response(cls, conversation_id: str, **fields: Any) -> "LoopEvent":
        return cls("response", ResponseData(conversation_id=conversation_id, **fields))

    @classmethod
    def error(cls, conversation_id: str, message: str) -> "LoopEvent":
        return cls("error", ErrorData(conversation_id=conversation_id, error=message))

    @classmethod
    def end(cls, conversation_id: str, *, user_stop: bool = False) -> "LoopEvent":
        return cls("end", EndData(conversation_id=conversation_id, user_stop=user_stop))


__all__ = [
    "EndData",
    "ErrorData",
    "ErrorEvent",
    "ImageDataEvent",
    "LoopEvent",
    "RateLimitEvent",
    "ReasoningEvent",
    "ResponseData",
    "StopEvent",
    "StopReason",
    "StreamEvent",
    "TextEvent",
    "ToolCallChunkEvent",
    "ToolCallEndEvent",
    "ToolCallPhase",
    "ToolCallStartEvent",
    "Usage",
    "UsageEvent",
]
