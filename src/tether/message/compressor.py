"""Reclaim context by stripping tool-call bodies from earlier turns."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Dict, List

from tether.log_utils import log_event
from tether.message.tokens import approx_tokens, estimate_messages_tokens
from tether.messages import ChatMessage

logger = logging.getLogger(__name__)

REMOVED_MARKER = "[tool call {name} removed to save context]"


@dataclass
class CompressionResult:
    messages: List[ChatMessage]
    removed_tokens: int = 0
    removed_tool_calls: int = 0


def _last_user_index(messages: List[ChatMessage]) -> int:
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].get("role") == "user":
            return index
    return -1


def compress_tool_calls_from_context(
    messages: List[ChatMessage],
    excess_tokens: int,
    supports_function_call: bool,
) -> CompressionResult:
    """Drop tool calls (and their ``tool`` replies) that precede the latest user message.

    Removal walks forward from the oldest turn and stops once
    ``excess_tokens`` have been recovered. Each stripped assistant message
    keeps a short marker in its content. Messages at or after the latest user
    message are never touched. The input list is not modified.
    """

    if not supports_function_call or excess_tokens <= 0:
        return CompressionResult(messages=messages)

    edited = copy.deepcopy(messages)
    boundary = _last_user_index(edited)
    if boundary <= 0:
        return CompressionResult(messages=edited)

    responses: Dict[str, ChatMessage] = {
        message["tool_call_id"]: message
        for message in edited[:boundary]
        if message.get("role") == "tool" and message.get("tool_call_id")
    }
    dropped_ids: set[str] = set()
    removed_tokens = 0
    removed_calls = 0

    for message in edited[:boundary]:
        if removed_tokens >= excess_tokens:
            break
        if message.get("role") != "assistant" or not message.get("tool_calls"):
            continue
        markers: list[str] = []
        for call in message["tool_calls"]:
            name = call["function"]["name"]
            reply = responses.get(call["id"])
            removed_tokens += approx_tokens(name) + approx_tokens(call["function"]["arguments"])
            if reply is not None:
                removed_tokens += approx_tokens(reply.get("content"))
            dropped_ids.add(call["id"])
            markers.append(REMOVED_MARKER.format(name=name))
            removed_calls += 1
        del message["tool_calls"]
        message["content"] = "\n".join(part for part in (message.get("content"), *markers) if part)

    if not dropped_ids:
        return CompressionResult(messages=edited)

    kept = [
        message
        for index, message in enumerate(edited)
        if not (index < boundary and message.get("role") == "tool" and message.get("tool_call_id") in dropped_ids)
    ]
    log_event(
        logger,
        "context.compress",
        level=logging.DEBUG,
        removed_tool_calls=removed_calls,
        removed_tokens=removed_tokens,
        excess_tokens=excess_tokens,
    )
    return CompressionResult(messages=kept, removed_tokens=removed_tokens, removed_tool_calls=removed_calls)


def compress_to_budget(
    messages: List[ChatMessage],
    token_budget: int,
    supports_function_call: bool,
) -> CompressionResult:
    """Compress only when the estimated size exceeds ``token_budget`` (0 disables)."""

    if token_budget <= 0:
        return CompressionResult(messages=messages)
    excess = estimate_messages_tokens(messages) - token_budget
    return compress_tool_calls_from_context(messages, excess, supports_function_call)


__all__ = ["CompressionResult", "REMOVED_MARKER", "compress_to_budget", "compress_tool_calls_from_context"]
