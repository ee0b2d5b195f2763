"""Translate ACP session notifications into the internal stream vocabulary.

External agents report tool calls as a ``tool_call`` notification followed
by ``tool_call_update`` notifications whose content carries argument or
output fragments. The mapper stitches those fragments back together and
emits ``tool_call_start`` / ``tool_call_chunk`` / ``tool_call_end`` events,
so the agent loop treats an ACP agent like any other provider.

State is keyed by ``(session_id, tool_call_id)``: agents number their tool
calls per session, so the same id can be live in two sessions at once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from acp import SessionNotification

from tether.events import (
    ImageDataEvent,
    ReasoningEvent,
    StreamEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})


@dataclass
class AcpToolCallState:
    session_id: str
    tool_call_id: str
    tool_name: str
    arguments: str = ""
    status: str | None = None
    started: bool = False


@dataclass(frozen=True)
class PlanEntryUpdate:
    content: str
    status: str
    priority: str | None = None


@dataclass
class MappedContent:
    events: List[StreamEvent] = field(default_factory=list)
    plan: List[PlanEntryUpdate] | None = None


class AcpContentMapper:
    """Stateful translator shared by every ACP session in the process."""

    def __init__(self) -> None:
        self._tool_calls: Dict[Tuple[str, str], AcpToolCallState] = {}

    def map(self, notification: SessionNotification) -> MappedContent:  # noqa: A003 - mapper API name
        return self.map_update(notification.session_id, notification.update)

    def map_update(self, session_id: str, update: Any) -> MappedContent:
        payload = MappedContent()
        kind = getattr(update, "session_update", None)
        if kind == "agent_message_chunk":
            self._push_content(getattr(update, "content", None), "text", payload)
        elif kind == "agent_thought_chunk":
            self._push_content(getattr(update, "content", None), "reasoning", payload)
        elif kind in ("tool_call", "tool_call_update"):
            self._handle_tool_call(session_id, kind, update, payload)
        elif kind == "plan":
            self._handle_plan(update, payload)
        elif kind != "user_message_chunk":
            log_event(logger, "acp.update.unhandled", level=logging.DEBUG, session_id=session_id, kind=kind)
        return payload

    def active_tool_calls(self, session_id: str) -> List[AcpToolCallState]:
        return [state for (sid, _), state in self._tool_calls.items() if sid == session_id]

    def clear_session(self, session_id: str) -> None:
        for key in [key for key in self._tool_calls if key[0] == session_id]:
            del self._tool_calls[key]

    def clear_all(self) -> None:
        self._tool_calls.clear()

    def _push_content(self, block: Any, channel: str, payload: MappedContent) -> None:
        if block is None:
            return
        block_type = getattr(block, "type", None)
        if block_type == "text":
            self._emit_text(block.text, channel, payload)
        elif block_type == "image":
            payload.events.append(ImageDataEvent(data=block.data, mime_type=block.mime_type))
        elif block_type == "audio":
            self._emit_text(f"[audio {block.mime_type}]", channel, payload)
        elif block_type == "resource_link":
            self._emit_text(block.uri, channel, payload)
        else:
            self._emit_text(_dump(getattr(block, "resource", block)), channel, payload)

    @staticmethod
    def _emit_text(text: str, channel: str, payload: MappedContent) -> None:
        if channel == "text":
            payload.events.append(TextEvent(content=text))
        else:
            payload.events.append(ReasoningEvent(content=text))

    def _handle_tool_call(self, session_id: str, kind: str, update: Any, payload: MappedContent) -> None:
        tool_call_id = getattr(update, "tool_call_id", None)
        if not tool_call_id:
            return
        title = (getattr(update, "title", None) or "").strip() or None
        status = getattr(update, "status", None)

        key = (session_id, tool_call_id)
        state = self._tool_calls.get(key)
        if state is None:
            state = AcpToolCallState(session_id=session_id, tool_call_id=tool_call_id, tool_name=title or tool_call_id)
            self._tool_calls[key] = state
        elif title:
            state.tool_name = title

        previous_status = state.status
        if status:
            state.status = status

        if not state.started:
            state.started = True
            payload.events.append(ToolCallStartEvent(tool_call_id=tool_call_id, tool_call_name=state.tool_name))

        if kind == "tool_call" or (status and status != previous_status):
            segments = ["Tool call", state.tool_name, status.replace("_", " ") if status else None]
            payload.events.append(ReasoningEvent(content=" - ".join(s for s in segments if s)))

        fragment = format_tool_call_content(getattr(update, "content", None))
        if fragment:
            state.arguments += fragment
            payload.events.append(ToolCallChunkEvent(tool_call_id=tool_call_id, fragment=fragment))

        if status in TERMINAL_STATUSES:
            payload.events.append(
                ToolCallEndEvent(tool_call_id=tool_call_id, complete_arguments=state.arguments.strip() or None)
            )
            del self._tool_calls[key]
            log_event(
                logger,
                "acp.tool_call.end",
                level=logging.DEBUG,
                session_id=session_id,
                tool_call_id=tool_call_id,
                status=status,
                arguments_len=len(state.arguments),
            )

    @staticmethod
    def _handle_plan(update: Any, payload: MappedContent) -> None:
        entries = [
            PlanEntryUpdate(
                content=entry.content,
                status=str(entry.status),
                priority=str(getattr(entry, "priority", None) or "") or None,
            )
            for entry in getattr(update, "entries", None) or []
        ]
        if not entries:
            return
        payload.plan = entries
        summary = "; ".join(f"{entry.content} ({entry.status})" for entry in entries)
        payload.events.append(ReasoningEvent(content=f"Plan updated: {summary}"))


def format_tool_call_content(contents: Sequence[Any] | None) -> str:
    """Render ACP tool-call content items as plain text fragments."""

    parts: list[str] = []
    for item in contents or []:
        item_type = getattr(item, "type", None)
        if item_type == "content":
            block = item.content
            block_type = getattr(block, "type", None)
            if block_type == "text":
                parts.append(block.text)
            elif block_type == "resource_link":
                parts.append(block.uri)
            elif block_type in ("image", "audio", "resource"):
                parts.append(f"[{block_type}]")
            else:
                parts.append(_dump(block))
        elif item_type == "terminal":
            output = getattr(item, "output", None)
            parts.append(output if isinstance(output, str) else f"[terminal:{item.terminal_id}]")
        elif item_type == "diff":
            parts.append(f"diff: {item.path}" if getattr(item, "path", None) else "[diff]")
        elif item is not None:
            parts.append(_dump(item))
    return "".join(part for part in parts if part)


def _dump(value: Any) -> str:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(value, ensure_ascii=False, default=str)


__all__ = ["AcpContentMapper", "AcpToolCallState", "MappedContent", "PlanEntryUpdate", "format_tool_call_content"]
