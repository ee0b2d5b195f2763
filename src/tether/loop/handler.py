"""The agent loop: stream a model turn, run its tool calls, repeat."""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Sequence

from tether.config import EngineConfig
from tether.events import (
    ErrorEvent,
    ImageDataEvent,
    LoopEvent,
    RateLimitEvent,
    ReasoningEvent,
    StopEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)
from tether.log_utils import log_event
from tether.loop.processor import ToolCallProcessor
from tether.loop.state import LoopState
from tether.message.compressor import compress_to_budget
from tether.messages import ChatMessage, ToolCallRecord
from tether.providers.base import Provider, ProviderRequest
from tether.providers.function_calls import extract_function_calls
from tether.session.manager import SessionManager, WorkspaceContext
from tether.sink import EventSink
from tether.tools.manager import ToolManager

logger = logging.getLogger(__name__)


class AgentLoop:
    """Drives one conversation turn to completion.

    ``run`` is an async generator of ``LoopEvent``; it always finishes with
    exactly one ``end`` event unless the consuming task itself is cancelled.
    Starting a run cancels any run still active for the same conversation.
    """

    def __init__(
        self,
        provider: Provider,
        tool_manager: ToolManager,
        session_manager: SessionManager,
        *,
        config: EngineConfig | None = None,
        sink: EventSink | None = None,
        processor: ToolCallProcessor | None = None,
    ) -> None:
        self.provider = provider
        self.tool_manager = tool_manager
        self.session_manager = session_manager
        self.config = config or EngineConfig()
        self.sink = sink
        self.processor = processor or ToolCallProcessor(
            tool_manager, config=self.config, session_manager=session_manager, sink=sink
        )

    async def run(
        self,
        conversation_id: str,
        messages: List[ChatMessage],
        *,
        model_id: str | None = None,
        system_prompt: str | None = None,
        enabled_tools: Sequence[str] | None = None,
        resume_tool_calls: Sequence[ToolCallRecord] = (),
    ) -> AsyncIterator[LoopEvent]:
        """Run the loop over ``messages``, which are extended in place.

        ``resume_tool_calls`` are executed before the model is asked again,
        e.g. a command call that was waiting for approval.
        """

        runtime = self.session_manager.start_loop(conversation_id)
        state = LoopState(
            conversation_id=conversation_id,
            messages=messages,
            loop_id=runtime.loop_id,
            cancel_event=runtime.cancel_event,
        )
        log_event(
            logger,
            "loop.start",
            conversation_id=conversation_id,
            loop_id=state.loop_id,
            model=model_id,
            messages=len(messages),
        )
        try:
            async for event in self._passes(
                state,
                model_id=model_id,
                system_prompt=system_prompt,
                enabled_tools=enabled_tools,
                resume_tool_calls=list(resume_tool_calls),
            ):
                yield event
        finally:
            self.session_manager.finish_loop(runtime)

        aborted = state.aborted
        if not aborted:
            yield LoopEvent.response(conversation_id, total_usage=state.usage)
        log_event(
            logger,
            "loop.end",
            conversation_id=conversation_id,
            loop_id=state.loop_id,
            user_stop=aborted,
            tool_calls=state.tool_call_count,
            total_tokens=state.usage.total_tokens,
        )
        yield LoopEvent.end(conversation_id, user_stop=aborted)

    async def _prepare(
        self, state: LoopState, model_id: str | None, enabled_tools: Sequence[str] | None
    ) -> WorkspaceContext:
        context = await self.session_manager.resolve_workspace_context(state.conversation_id, model_id)
        state.supports_function_call = await self.session_manager.resolve_function_calling(
            state.conversation_id, self.config.supports_function_call
        )
        await self.tool_manager.get_all_tool_definitions(context.mode, enabled_tools)
        return context

    def _compress(self, state: LoopState) -> None:
        if self.config.context_token_budget <= 0:
            return
        result = compress_to_budget(state.messages, self.config.context_token_budget, state.supports_function_call)
        if result.removed_tool_calls:
            state.messages[:] = result.messages

    async def _passes(
        self,
        state: LoopState,
        *,
        model_id: str | None,
        system_prompt: str | None,
        enabled_tools: Sequence[str] | None,
        resume_tool_calls: List[ToolCallRecord],
    ) -> AsyncIterator[LoopEvent]:
        conv = state.conversation_id
        try:
            context = await self._prepare(state, model_id, enabled_tools)
        except Exception as exc:  # noqa: BLE001 - reported to the consumer as an error event
            log_event(logger, "loop.prepare.error", level=logging.ERROR, error=str(exc))
            yield LoopEvent.error(conv, str(exc) or exc.__class__.__name__)
            return

        if resume_tool_calls:
            async for event in self.processor.process(state, resume_tool_calls, workspace=context.workspace_path):
                yield event
            if state.aborted or not state.need_continue:
                return

        while True:
            if state.aborted:
                break
            if state.tool_call_count >= self.config.max_tool_calls:
                log_event(logger, "loop.max_tool_calls", level=logging.WARNING, count=state.tool_call_count)
                yield LoopEvent.response(conv, maximum_tool_calls_reached=True)
                break

            state.reset_turn()
            need_continue = False
            try:
                tools = await self.tool_manager.get_all_tool_definitions(context.mode, enabled_tools)
                self._compress(state)
                request = ProviderRequest(
                    conversation_id=conv,
                    messages=state.messages,
                    tools=tools,
                    system_prompt=self.tool_manager.build_tool_system_prompt(
                        system_prompt, state.supports_function_call
                    ),
                    workspace=str(context.workspace_path) if context.workspace_path else None,
                    model_id=model_id,
                    cancel_event=state.cancel_event,
                    supports_function_call=state.supports_function_call,
                )
                provider_stream = self.provider.stream(request)
                if not state.supports_function_call:
                    provider_stream = extract_function_calls(provider_stream)
                stream_failed = False
                async with aclosing(provider_stream) as stream:
                    async for event in stream:
                        if state.aborted:
                            break
                        if isinstance(event, TextEvent):
                            state.content += event.content
                            yield LoopEvent.response(conv, content=event.content)
                        elif isinstance(event, ReasoningEvent):
                            state.reasoning += event.content
                            yield LoopEvent.response(conv, reasoning_content=event.content)
                        elif isinstance(event, ToolCallStartEvent):
                            state.fragments[event.tool_call_id] = ToolCallRecord(
                                id=event.tool_call_id, name=event.tool_call_name
                            )
                            yield LoopEvent.response(
                                conv,
                                tool_call="start",
                                tool_call_id=event.tool_call_id,
                                tool_call_name=event.tool_call_name,
                                tool_call_params="",
                            )
                        elif isinstance(event, ToolCallChunkEvent):
                            record = state.fragments.get(event.tool_call_id)
                            if record is None:
                                continue
                            record.arguments += event.fragment
                            yield LoopEvent.response(
                                conv,
                                tool_call="update",
                                tool_call_id=record.id,
                                tool_call_name=record.name,
                                tool_call_params=event.fragment,
                            )
                        elif isinstance(event, ToolCallEndEvent):
                            record = state.fragments.pop(event.tool_call_id, None)
                            if record is None:
                                continue
                            if event.complete_arguments is not None:
                                record.arguments = event.complete_arguments
                            state.tool_calls.append(record)
                            yield LoopEvent.response(
                                conv,
                                tool_call="update",
                                tool_call_id=record.id,
                                tool_call_name=record.name,
                                tool_call_params=record.arguments,
                            )
                        elif isinstance(event, UsageEvent):
                            state.usage.add(event)
                            yield LoopEvent.response(conv, total_usage=state.usage)
                        elif isinstance(event, ImageDataEvent):
                            state.content += f"\n[Image data received: {event.mime_type}]\n"
                            yield LoopEvent.response(conv, image_data=event)
                        elif isinstance(event, RateLimitEvent):
                            yield LoopEvent.response(conv, rate_limit=event)
                        elif isinstance(event, ErrorEvent):
                            log_event(logger, "loop.stream.error", level=logging.WARNING, error=event.message)
                            yield LoopEvent.error(conv, event.message)
                            stream_failed = True
                            break
                        elif isinstance(event, StopEvent):
                            log_event(logger, "loop.stream.stop", level=logging.DEBUG, reason=event.reason)
                            if event.reason == "tool_use":
                                state.consolidate_fragments()
                                need_continue = bool(state.tool_calls)
                            break

                if state.aborted or stream_failed:
                    break

                if state.content or (need_continue and state.tool_calls):
                    state.messages.append({"role": "assistant", "content": state.content or None})

                if not (need_continue and state.tool_calls):
                    break

                async for event in self.processor.process(
                    state, list(state.tool_calls), workspace=context.workspace_path
                ):
                    yield event
                if state.aborted or not state.need_continue:
                    break
            except Exception as exc:  # noqa: BLE001 - reported to the consumer as an error event
                if state.aborted:
                    break
                log_event(logger, "loop.error", level=logging.ERROR, error=str(exc), exc_info=True)
                yield LoopEvent.error(conv, str(exc) or exc.__class__.__name__)
                break


__all__ = ["AgentLoop"]
