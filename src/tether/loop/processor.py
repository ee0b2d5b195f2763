"""Execute the tool calls a model turn produced and record their results."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import AsyncIterator, List

from tether.config import EngineConfig
from tether.errors import (
    CommandPermissionRequiredError,
    ToolCallCancelled,
    is_non_retryable_error,
)
from tether.events import LoopEvent
from tether.log_utils import log_context, log_event
from tether.loop.state import LoopState, await_with_cancel
from tether.message.builder import (
    append_tool_error,
    append_tool_exchange,
    ensure_tool_call_id,
    stringify_tool_content,
)
from tether.messages import ToolCallRecord
from tether.paths import ensure_dir, offload_path
from tether.session.manager import SessionManager
from tether.sink import EventSink
from tether.tools.args import parse_tool_arguments
from tether.tools.base import ToolInvocation
from tether.tools.manager import ToolManager

logger = logging.getLogger(__name__)


def build_offload_stub(total_chars: int, preview: str, path: Path) -> str:
    return "\n".join(
        [
            "[Tool output offloaded]",
            f"Total characters: {total_chars}",
            f"Full output saved to: {path}",
            f"first {len(preview)} chars:",
            preview,
        ]
    )


class ToolCallProcessor:
    """Runs queued tool calls in order and appends result messages.

    ``process`` is an async generator of loop events; it clears
    ``state.need_continue`` when the loop should not ask the model again.
    """

    def __init__(
        self,
        tool_manager: ToolManager,
        *,
        config: EngineConfig | None = None,
        session_manager: SessionManager | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self.tool_manager = tool_manager
        self.config = config or EngineConfig()
        self.session_manager = session_manager
        self.sink = sink

    def offload_if_needed(self, content: str, conversation_id: str, tool_call_id: str) -> str:
        """Write oversized output to the session directory and return a stub.

        Content at or below the threshold, or without a conversation to file
        it under, is returned unchanged. A failed write keeps the full text.
        """

        if len(content) <= self.config.offload_threshold or not conversation_id:
            return content
        try:
            path = offload_path(conversation_id, tool_call_id, self.config.resolved_data_root())
            ensure_dir(path.parent)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            log_event(logger, "tool.offload.failed", level=logging.WARNING, tool_call_id=tool_call_id, error=str(exc))
            return content
        log_event(logger, "tool.offload", tool_call_id=tool_call_id, path=str(path), chars=len(content))
        return build_offload_stub(len(content), content[: self.config.offload_preview_chars], path)

    def _notify(self, state: LoopState, call: ToolCallRecord, status: str) -> None:
        if self.sink is not None:
            self.sink.publish(
                "tool_result",
                conversation_id=state.conversation_id,
                tool_call_id=call.id,
                tool_name=call.name,
                server_name=call.server_name,
                status=status,
            )

    async def process(
        self,
        state: LoopState,
        tool_calls: List[ToolCallRecord],
        *,
        workspace: Path | None = None,
    ) -> AsyncIterator[LoopEvent]:
        conv = state.conversation_id
        state.need_continue = bool(tool_calls)

        for call in tool_calls:
            if state.aborted:
                break
            # one id for events, offload file and message pairing
            call.id = ensure_tool_call_id(call.id)

            if state.tool_call_count >= self.config.max_tool_calls:
                log_event(logger, "loop.max_tool_calls", level=logging.WARNING, count=state.tool_call_count)
                yield LoopEvent.response(
                    conv,
                    maximum_tool_calls_reached=True,
                    tool_call_id=call.id,
                    tool_call_name=call.name,
                )
                state.need_continue = False
                break

            state.tool_call_count += 1
            if self.session_manager is not None:
                self.session_manager.increment_tool_call_count(conv)

            definition = self.tool_manager.get_definition(call.name)
            if definition is None:
                message = f"Tool definition for {call.name} not found."
                log_event(logger, "tool.call.unknown", level=logging.WARNING, tool=call.name, tool_call_id=call.id)
                call.status = "failed"
                yield LoopEvent.response(
                    conv,
                    tool_call="error",
                    tool_call_id=call.id,
                    tool_call_name=call.name,
                    tool_call_response=message,
                )
                state.messages.append({"role": "user", "content": f"Error: {message}"})
                continue

            call.server_name = definition.server_name
            call.status = "running"
            yield LoopEvent.response(
                conv,
                tool_call="running",
                tool_call_id=call.id,
                tool_call_name=call.name,
                tool_call_params=call.arguments,
                tool_call_server_name=call.server_name,
            )
            log_event(logger, "tool.call.start", tool=call.name, tool_call_id=call.id)

            try:
                invocation = ToolInvocation(
                    tool_call_id=call.id,
                    name=call.name,
                    arguments=parse_tool_arguments(call.arguments, call.name),
                    raw_arguments=call.arguments,
                    conversation_id=conv,
                    workspace=workspace,
                )
                with log_context(conversation_id=conv, tool_call_id=call.id, tool=call.name):
                    result = await await_with_cancel(self.tool_manager.call_tool(invocation), state.cancel_event)
            except CommandPermissionRequiredError as exc:
                call.status = "pending"
                self._notify(state, call, "permission")
                if self.session_manager is not None:
                    self.session_manager.set_pending_permission(conv, exc.request)
                log_event(
                    logger,
                    "tool.call.permission_required",
                    tool=call.name,
                    tool_call_id=call.id,
                    signature=exc.request.signature,
                    risk=exc.request.risk,
                )
                yield LoopEvent.response(
                    conv,
                    tool_call="permission-required",
                    tool_call_id=call.id,
                    tool_call_name=call.name,
                    tool_call_params=call.arguments,
                    tool_call_server_name=call.server_name,
                    tool_call_response=str(exc),
                    permission_request=exc.request,
                )
                state.need_continue = False
                break
            except ToolCallCancelled:
                call.status = "cancelled"
                log_event(logger, "tool.call.cancelled", tool=call.name, tool_call_id=call.id)
                break
            except Exception as exc:  # noqa: BLE001 - any tool failure becomes a tool-role error result
                if state.aborted:
                    break
                call.status = "failed"
                self._notify(state, call, "error")
                message = str(exc) or exc.__class__.__name__
                non_retryable = is_non_retryable_error(message)
                log_event(
                    logger,
                    "tool.call.error",
                    level=logging.WARNING,
                    tool=call.name,
                    tool_call_id=call.id,
                    error=message,
                    non_retryable=non_retryable,
                )
                append_tool_error(
                    state.messages,
                    tool_call_id=call.id,
                    tool_name=call.name,
                    tool_arguments=call.arguments,
                    error=message,
                    supports_function_call=state.supports_function_call,
                )
                yield LoopEvent.response(
                    conv,
                    tool_call="error",
                    tool_call_id=call.id,
                    tool_call_name=call.name,
                    tool_call_params=call.arguments,
                    tool_call_response=message,
                    tool_call_server_name=call.server_name,
                )
                if non_retryable:
                    state.need_continue = False
                    break
                continue

            self._notify(state, call, "success")
            if state.aborted:
                break

            content = self.offload_if_needed(stringify_tool_content(result.content), conv, call.id)
            call.response = content
            call.status = "completed"
            append_tool_exchange(
                state.messages,
                tool_call_id=call.id,
                tool_name=call.name,
                tool_arguments=call.arguments,
                tool_response=content,
                supports_function_call=state.supports_function_call,
            )
            log_event(logger, "tool.call.end", tool=call.name, tool_call_id=call.id, chars=len(content))
            yield LoopEvent.response(
                conv,
                tool_call="end",
                tool_call_id=call.id,
                tool_call_name=call.name,
                tool_call_params=call.arguments,
                tool_call_response=content,
                tool_call_response_raw=result.raw,
                tool_call_server_name=result.metadata.get("server_name", call.server_name),
            )


__all__ = ["ToolCallProcessor", "build_offload_stub"]
