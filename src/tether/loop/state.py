"""Per-pass loop state and cancellation helpers."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, TypeVar

from tether.errors import ToolCallCancelled
from tether.events import Usage
from tether.messages import ChatMessage, ToolCallRecord

T = TypeVar("T")


@dataclass
class LoopState:
    """State owned by one loop run; discarded when the run ends."""

    conversation_id: str
    messages: List[ChatMessage]
    loop_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    tool_call_count: int = 0
    need_continue: bool = True
    supports_function_call: bool = True
    content: str = ""
    reasoning: str = ""
    fragments: Dict[str, ToolCallRecord] = field(default_factory=dict)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)

    @property
    def aborted(self) -> bool:
        return self.cancel_event.is_set()

    def reset_turn(self) -> None:
        """Clear what one model response accumulated."""
        self.content = ""
        self.reasoning = ""
        self.fragments.clear()
        self.tool_calls.clear()

    def consolidate_fragments(self) -> None:
        """Queue fragments that never received an end event."""
        queued = {call.id for call in self.tool_calls}
        for tool_call_id, record in list(self.fragments.items()):
            if tool_call_id not in queued and record.name:
                self.tool_calls.append(record)
        self.fragments.clear()


async def await_with_cancel(awaitable: Awaitable[T], cancel_event: asyncio.Event) -> T:
    """Await ``awaitable`` unless ``cancel_event`` fires first.

    Raises ``ToolCallCancelled`` when the event wins; the pending work is
    cancelled and awaited so subprocesses and connections get cleaned up.
    """

    main_task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        main_task.cancel()
        await asyncio.gather(main_task, return_exceptions=True)
        raise ToolCallCancelled("Cancelled before the tool started")

    wait_task = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _pending = await asyncio.wait({main_task, wait_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        main_task.cancel()
        raise
    finally:
        wait_task.cancel()

    if main_task in done:
        return main_task.result()
    main_task.cancel()
    await asyncio.gather(main_task, return_exceptions=True)
    raise ToolCallCancelled("Cancelled while the tool was running")


__all__ = ["LoopState", "await_with_cancel"]
