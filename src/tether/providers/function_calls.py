"""Tool calls for models without native function calling.

Such models are told to answer with ``<function_call>`` blocks holding a JSON
object. ``extract_function_calls`` wraps a provider stream, hides those
blocks from the visible text and turns each one into the start, chunk and
end events a native tool call would have produced.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List

from json_repair import repair_json

from tether.events import (
    StopEvent,
    StreamEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from tether.log_utils import log_event
from tether.message.builder import generate_tool_call_id
from tether.messages import ToolCallRecord

logger = logging.getLogger(__name__)

OPEN_TAG = "<function_call>"
CLOSE_TAG = "</function_call>"
FUNCTION_CALL_RE = re.compile(r"<function_call>(.*?)</function_call>", re.DOTALL)


def _load(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        repaired = repair_json(content, return_objects=True)
        log_event(logger, "provider.function_call.repaired", level=logging.DEBUG, ok=isinstance(repaired, dict))
        return repaired


def _name_and_arguments(parsed: Dict[str, Any]) -> tuple[Any, Any]:
    if isinstance(parsed.get("function_call"), dict):
        body = parsed["function_call"]
        return body.get("name"), body.get("arguments")
    if parsed.get("name") and "arguments" in parsed:
        return parsed["name"], parsed["arguments"]
    if isinstance(parsed.get("function"), dict) and parsed["function"].get("name"):
        return parsed["function"]["name"], parsed["function"].get("arguments")
    if len(parsed) == 1:
        [inner] = parsed.values()
        if isinstance(inner, dict):
            if inner.get("name") and "arguments" in inner:
                return inner["name"], inner["arguments"]
            if isinstance(inner.get("function"), dict) and inner["function"].get("name"):
                return inner["function"]["name"], inner["function"].get("arguments")
    return None, None


def parse_function_call(content: str) -> ToolCallRecord | None:
    """Parse the body of one ``<function_call>`` block.

    Accepts ``{"function_call": {...}}``, a bare ``{"name", "arguments"}``
    object, an OpenAI style ``{"function": {...}}`` and any of those nested
    under a single key. History records (``function_call_record``) describe
    calls that already ran and are never returned.
    """

    content = content.strip()
    if not content:
        return None
    parsed = _load(content)
    if not isinstance(parsed, dict) or "function_call_record" in parsed:
        return None
    name, arguments = _name_and_arguments(parsed)
    if not name:
        log_event(logger, "provider.function_call.unnamed", level=logging.WARNING, content=content[:200])
        return None
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments, ensure_ascii=False)
    call_id = parsed.get("id")
    return ToolCallRecord(
        id=str(call_id) if call_id else generate_tool_call_id(),
        name=str(name),
        arguments=arguments,
    )


def parse_function_calls(text: str) -> List[ToolCallRecord]:
    """Every well-formed tool call found in ``text``, in order."""
    calls = []
    for match in FUNCTION_CALL_RE.finditer(text):
        call = parse_function_call(match.group(1))
        if call is not None:
            calls.append(call)
    return calls


def _partial_tag_length(text: str) -> int:
    """Length of the longest suffix of ``text`` that may begin an open tag."""
    for size in range(min(len(text), len(OPEN_TAG) - 1), 0, -1):
        if OPEN_TAG.startswith(text[-size:]):
            return size
    return 0


class FunctionCallSplitter:
    """Separates visible text from ``<function_call>`` blocks as it streams."""

    def __init__(self) -> None:
        self.pending = ""
        self.inside = False
        self.calls: List[ToolCallRecord] = []

    def feed(self, text: str) -> str:
        """Consume a text delta and return the part that is safe to show."""
        self.pending += text
        visible = []
        while True:
            if self.inside:
                end = self.pending.find(CLOSE_TAG)
                if end < 0:
                    break
                call = parse_function_call(self.pending[:end])
                if call is not None:
                    self.calls.append(call)
                self.pending = self.pending[end + len(CLOSE_TAG):]
                self.inside = False
                continue
            start = self.pending.find(OPEN_TAG)
            if start >= 0:
                visible.append(self.pending[:start])
                self.pending = self.pending[start + len(OPEN_TAG):]
                self.inside = True
                continue
            keep = _partial_tag_length(self.pending)
            cut = len(self.pending) - keep
            visible.append(self.pending[:cut])
            self.pending = self.pending[cut:]
            break
        return "".join(visible)

    def flush(self) -> str:
        """Text still held back; an unclosed block is shown as written."""
        text = (OPEN_TAG + self.pending) if self.inside else self.pending
        self.pending = ""
        self.inside = False
        return text


async def extract_function_calls(stream: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
    """Rewrite a text-only stream so embedded calls arrive as tool call events."""

    splitter = FunctionCallSplitter()
    async with aclosing(stream) as events:
        async for event in events:
            if isinstance(event, TextEvent):
                visible = splitter.feed(event.content)
                if visible:
                    yield TextEvent(visible)
                continue
            if not isinstance(event, StopEvent):
                yield event
                continue
            rest = splitter.flush()
            if rest:
                yield TextEvent(rest)
            calls, splitter.calls = splitter.calls, []
            for call in calls:
                yield ToolCallStartEvent(call.id, call.name)
                yield ToolCallChunkEvent(call.id, call.arguments)
                yield ToolCallEndEvent(call.id, call.arguments)
            if calls:
                log_event(logger, "provider.function_call.parsed", count=len(calls))
                yield StopEvent("tool_use")
            else:
                yield event
    rest = splitter.flush()
    if rest:
        yield TextEvent(rest)


__all__ = [
    "FunctionCallSplitter",
    "extract_function_calls",
    "parse_function_call",
    "parse_function_calls",
]
