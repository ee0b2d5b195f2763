"""Approximate token accounting (roughly 4 UTF-8 bytes per token)."""

from __future__ import annotations

from typing import Iterable

from tether.messages import ChatMessage

MESSAGE_OVERHEAD_TOKENS = 4


def approx_tokens(text: str | None) -> int:
    if not text:
        return 0
    return max(1, (len(text.encode("utf-8")) + 3) // 4)


def estimate_message_tokens(message: ChatMessage) -> int:
    total = approx_tokens(message.get("content")) + MESSAGE_OVERHEAD_TOKENS
    for call in message.get("tool_calls") or []:
        total += approx_tokens(call["function"]["name"]) + approx_tokens(call["function"]["arguments"])
    return total


def estimate_messages_tokens(messages: Iterable[ChatMessage]) -> int:
    return sum(estimate_message_tokens(message) for message in messages)
