"""Provider backed by pydantic-ai's direct model request API."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List

import httpx
from pydantic_ai import exceptions as ai_exc
from pydantic_ai.direct import model_request_stream
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
    ToolCallPart,
    ToolCallPartDelta,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters, infer_model

from tether.events import (
    ErrorEvent,
    ReasoningEvent,
    StopEvent,
    StreamEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)
from tether.log_utils import log_event
from tether.messages import ChatMessage
from tether.providers.base import ProviderRequest

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "tool_call": "tool_use",
    "length": "max_tokens",
    "stop": "complete",
    "content_filter": "error",
    "error": "error",
}


def to_model_messages(messages: List[ChatMessage], system_prompt: str | None = None) -> List[ModelMessage]:
    """Convert chat messages into pydantic-ai request/response messages."""

    result: List[ModelMessage] = []
    tool_names: Dict[str, str] = {}
    if system_prompt:
        result.append(ModelRequest(parts=[SystemPromptPart(content=system_prompt)]))
    for message in messages:
        role = message.get("role")
        content = message.get("content") or ""
        if role == "system":
            result.append(ModelRequest(parts=[SystemPromptPart(content=content)]))
        elif role == "user":
            result.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        elif role == "assistant":
            parts: List[Any] = [TextPart(content=content)] if content else []
            for entry in message.get("tool_calls") or []:
                tool_names[entry["id"]] = entry["function"]["name"]
                parts.append(
                    ToolCallPart(
                        tool_name=entry["function"]["name"],
                        args=entry["function"]["arguments"] or "{}",
                        tool_call_id=entry["id"],
                    )
                )
            if parts:
                result.append(ModelResponse(parts=parts))
        elif role == "tool":
            call_id = message.get("tool_call_id", "")
            result.append(
                ModelRequest(
                    parts=[
                        ToolReturnPart(
                            tool_name=tool_names.get(call_id, message.get("name", "")),
                            content=content,
                            tool_call_id=call_id,
                        )
                    ]
                )
            )
    return result


def _args_text(args: Any) -> str:
    if args is None:
        return ""
    if isinstance(args, str):
        return args
    return json.dumps(args, ensure_ascii=False)


class PydanticAIProvider:
    """Streams a single model request and maps part events to stream events.

    ``model`` is a pydantic-ai ``Model`` or a ``"provider:model"`` string.
    """

    def __init__(self, model: Model | str) -> None:
        self.model = model

    def _model(self, request: ProviderRequest) -> Model | str:
        if request.model_id and isinstance(self.model, str) and request.model_id != self.model:
            return infer_model(request.model_id)
        return self.model

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        # without function calling the tools live in the system prompt
        function_tools = [spec.to_definition() for spec in request.tools] if request.supports_function_call else []
        params = ModelRequestParameters(
            function_tools=function_tools,
            allow_text_output=True,
        )
        messages = to_model_messages(request.messages, request.system_prompt)
        tool_ids: Dict[int, str] = {}
        try:
            async with model_request_stream(
                self._model(request), messages, model_request_parameters=params
            ) as response:
                async for event in response:
                    if request.cancel_event.is_set():
                        return
                    if isinstance(event, PartStartEvent):
                        part = event.part
                        if isinstance(part, TextPart) and part.content:
                            yield TextEvent(part.content)
                        elif isinstance(part, ThinkingPart) and part.content:
                            yield ReasoningEvent(part.content)
                        elif isinstance(part, ToolCallPart):
                            tool_ids[event.index] = part.tool_call_id
                            yield ToolCallStartEvent(part.tool_call_id, part.tool_name)
                            initial = _args_text(part.args)
                            if initial:
                                yield ToolCallChunkEvent(part.tool_call_id, initial)
                    elif isinstance(event, PartDeltaEvent):
                        delta = event.delta
                        if isinstance(delta, TextPartDelta) and delta.content_delta:
                            yield TextEvent(delta.content_delta)
                        elif isinstance(delta, ThinkingPartDelta) and delta.content_delta:
                            yield ReasoningEvent(delta.content_delta)
                        elif isinstance(delta, ToolCallPartDelta) and event.index in tool_ids:
                            fragment = _args_text(delta.args_delta)
                            if fragment:
                                yield ToolCallChunkEvent(tool_ids[event.index], fragment)
                final = response.get()
        except (ai_exc.AgentRunError, httpx.HTTPError) as exc:
            log_event(logger, "provider.stream.error", level=logging.WARNING, error=str(exc))
            yield ErrorEvent(str(exc) or exc.__class__.__name__)
            return

        tool_parts = [part for part in final.parts if isinstance(part, ToolCallPart)]
        for part in tool_parts:
            yield ToolCallEndEvent(part.tool_call_id, part.args_as_json_str())

        usage = final.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        yield UsageEvent(input_tokens, output_tokens, input_tokens + output_tokens)

        finish_reason = getattr(final, "finish_reason", None)
        reason = "tool_use" if tool_parts else _FINISH_REASONS.get(finish_reason or "stop", "complete")
        yield StopEvent(reason)  # type: ignore[arg-type]


__all__ = ["PydanticAIProvider", "to_model_messages"]
