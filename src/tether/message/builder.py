"""Build the messages that report a finished tool call back to the model.

With function calling, an assistant message carrying ``tool_calls`` is paired
with a ``tool`` message whose ``tool_call_id`` matches. Models without
function calling get a ``<function_call>`` record embedded in assistant text,
followed by a user message asking them to continue.
"""

from __future__ import annotations

import json
import secrets
from typing import Any, Iterable, List

from tether.messages import ChatMessage, ToolCallEntry

LEGACY_CONTINUE_PROMPT = (
    "The tool call above and its response were inserted for you. "
    "Read the tool response carefully and continue your answer."
)


def generate_tool_call_id() -> str:
    return f"call_{secrets.token_hex(4)}"


def ensure_tool_call_id(tool_call_id: str | None) -> str:
    return tool_call_id if tool_call_id and tool_call_id.strip() else generate_tool_call_id()


def stringify_tool_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if hasattr(content, "model_dump"):
        content = content.model_dump(mode="json")
    return json.dumps(content, ensure_ascii=False, default=str)


def format_function_call_record(name: str, arguments: str, response: Any) -> str:
    record = {"function_call_record": {"name": name, "arguments": arguments, "response": response}}
    return f"<function_call>{json.dumps(record, ensure_ascii=False, default=str)}</function_call>"


def _tool_call_entry(tool_call_id: str, name: str, arguments: str) -> ToolCallEntry:
    return {"id": tool_call_id, "type": "function", "function": {"name": name, "arguments": arguments or ""}}


def build_post_tool_execution_context(
    *,
    user_message: ChatMessage,
    tool_call_id: str | None,
    tool_name: str,
    tool_arguments: str,
    tool_response: Any,
    supports_function_call: bool,
    system_prompt: str | None = None,
    context_messages: Iterable[ChatMessage] = (),
    assistant_text: str | None = None,
) -> List[ChatMessage]:
    """Return the full message list for the turn after a completed tool call.

    An empty or missing ``tool_call_id`` is replaced by a generated one used
    for both halves of the pair.
    """

    messages: List[ChatMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend(context_messages)
    messages.append(user_message)

    text = (assistant_text or "").strip()
    response_text = stringify_tool_content(tool_response)
    if supports_function_call:
        call_id = ensure_tool_call_id(tool_call_id)
        messages.append(
            {
                "role": "assistant",
                "content": text or None,
                "tool_calls": [_tool_call_entry(call_id, tool_name, tool_arguments)],
            }
        )
        messages.append({"role": "tool", "content": response_text, "tool_call_id": call_id})
    else:
        record = format_function_call_record(tool_name, tool_arguments, response_text)
        messages.append({"role": "assistant", "content": "\n".join(part for part in (text, record) if part)})
        messages.append({"role": "user", "content": LEGACY_CONTINUE_PROMPT})
    return messages


def _current_turn_assistant(messages: List[ChatMessage]) -> ChatMessage | None:
    for message in reversed(messages):
        role = message.get("role")
        if role == "assistant":
            return message
        if role == "user":
            return None
    return None


def append_tool_exchange(
    messages: List[ChatMessage],
    *,
    tool_call_id: str | None,
    tool_name: str,
    tool_arguments: str,
    tool_response: Any,
    supports_function_call: bool,
) -> str:
    """Append one finished tool call to a running conversation in place.

    The call is attached to the assistant message of the current turn (one
    is created if the turn has none), so several calls from one model reply
    share one assistant message followed by their ``tool`` results. Returns
    the tool-call id used for pairing.
    """

    call_id = ensure_tool_call_id(tool_call_id)
    response_text = stringify_tool_content(tool_response)
    assistant = _current_turn_assistant(messages)
    if supports_function_call:
        entry = _tool_call_entry(call_id, tool_name, tool_arguments)
        if assistant is None:
            messages.append({"role": "assistant", "content": None, "tool_calls": [entry]})
        else:
            assistant.setdefault("tool_calls", []).append(entry)
        messages.append({"role": "tool", "content": response_text, "tool_call_id": call_id})
        return call_id

    record = format_function_call_record(tool_name, tool_arguments, response_text) + "\n"
    if assistant is None:
        messages.append({"role": "assistant", "content": record})
    else:
        assistant["content"] = (assistant.get("content") or "") + record
    messages.append({"role": "user", "content": LEGACY_CONTINUE_PROMPT})
    return call_id


def append_tool_error(
    messages: List[ChatMessage],
    *,
    tool_call_id: str | None,
    tool_name: str,
    tool_arguments: str,
    error: str,
    supports_function_call: bool,
) -> str:
    """Append a failed call so the model still sees a paired result."""
    call_id = ensure_tool_call_id(tool_call_id)
    return append_tool_exchange(
        messages,
        tool_call_id=call_id,
        tool_name=tool_name,
        tool_arguments=tool_arguments,
        tool_response=f"The tool call with ID {call_id} and name {tool_name} failed to execute: {error}",
        supports_function_call=supports_function_call,
    )


__all__ = [
    "LEGACY_CONTINUE_PROMPT",
    "append_tool_error",
    "append_tool_exchange",
    "build_post_tool_execution_context",
    "ensure_tool_call_id",
    "format_function_call_record",
    "generate_tool_call_id",
    "stringify_tool_content",
]
