from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tether.config import EngineConfig
from tether.events import (
    ErrorEvent,
    StopEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)
from tether.loop.handler import AgentLoop
from tether.message.builder import LEGACY_CONTINUE_PROMPT, format_function_call_record
from tether.messages import ToolCallRecord
from tether.permissions.service import CommandPermissionService
from tether.providers.base import ProviderRequest
from tether.session.manager import SessionManager
from tether.tools.manager import ToolManager
from tether.tools.registry import ToolSource
from tests.utils import MemoryStore, ScriptedProvider, StaticBackend


def _tool_pass(call_id: str, name: str, arguments: str) -> list:
    return [
        TextEvent("Checking."),
        ToolCallStartEvent(tool_call_id=call_id, tool_call_name=name),
        ToolCallChunkEvent(tool_call_id=call_id, fragment=arguments),
        ToolCallEndEvent(tool_call_id=call_id),
        UsageEvent(prompt_tokens=10, completion_tokens=5),
        StopEvent("tool_use"),
    ]


def _final_pass(text: str) -> list:
    return [TextEvent(text), UsageEvent(prompt_tokens=3, completion_tokens=2), StopEvent("complete")]


def _loop(provider, backends, config: EngineConfig, mode: str = "chat", permissions=None, **settings) -> AgentLoop:
    store = MemoryStore(chat_mode=mode, **settings)
    sessions = SessionManager(store, data_root=config.data_root)
    manager = ToolManager(backends, permission_service=permissions)
    return AgentLoop(provider, manager, sessions, config=config)


@pytest.mark.asyncio
async def test_tool_round_trip_then_final_answer(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider([_tool_pass("c1", "clock", "{}"), _final_pass("It is noon.")])
    backend = StaticBackend(ToolSource.BUILTIN, ["clock"], lambda inv: "12:00")
    loop = _loop(provider, [backend], engine_config)
    messages = [{"role": "user", "content": "what time is it?"}]

    events = [event async for event in loop.run("conv-1", messages, system_prompt="Be brief.")]

    phases = [e.data.tool_call for e in events if e.type == "response" and e.data.tool_call]
    assert phases == ["start", "update", "update", "running", "end"]
    assert [e.type for e in events].count("end") == 1
    assert events[-1].type == "end" and events[-1].data.user_stop is False
    usage = events[-2].data.total_usage
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (13, 7, 20)

    assert [m["role"] for m in messages] == ["user", "assistant", "tool", "assistant"]
    assert messages[1]["content"] == "Checking."
    assert messages[1]["tool_calls"][0]["id"] == "c1"
    assert messages[2] == {"role": "tool", "content": "12:00", "tool_call_id": "c1"}
    assert messages[3] == {"role": "assistant", "content": "It is noon."}

    first, second = provider.requests
    assert [spec.name for spec in first.tools] == ["clock"]
    assert first.system_prompt.startswith("Be brief.\nAvailable tools:")
    assert second.messages is messages


@pytest.mark.asyncio
async def test_fragments_without_end_are_consolidated(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider(
        [
            [
                ToolCallStartEvent(tool_call_id="c1", tool_call_name="clock"),
                ToolCallChunkEvent(tool_call_id="c1", fragment='{"tz": '),
                ToolCallChunkEvent(tool_call_id="c1", fragment='"UTC"}'),
                StopEvent("tool_use"),
            ],
            _final_pass("ok"),
        ]
    )
    backend = StaticBackend(ToolSource.BUILTIN, ["clock"])
    loop = _loop(provider, [backend], engine_config)

    [event async for event in loop.run("conv-1", [{"role": "user", "content": "time"}])]

    assert backend.calls[0].arguments == {"tz": "UTC"}


@pytest.mark.asyncio
async def test_stream_error_ends_the_loop(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider([[TextEvent("partial"), ErrorEvent("upstream exploded")]])
    loop = _loop(provider, [], engine_config)
    messages = [{"role": "user", "content": "hi"}]

    events = [event async for event in loop.run("conv-1", messages)]

    errors = [e for e in events if e.type == "error"]
    assert [e.data.error for e in errors] == ["upstream exploded"]
    assert events[-1].type == "end"
    assert len(provider.requests) == 1
    assert messages == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_user_stop_ends_without_usage(engine_config: EngineConfig) -> None:
    class WaitingProvider:
        async def stream(self, request: ProviderRequest):
            yield TextEvent("a")
            await request.cancel_event.wait()
            yield TextEvent("b")
            yield StopEvent("complete")

    loop = _loop(WaitingProvider(), [], engine_config)
    events = []
    async for event in loop.run("conv-1", [{"role": "user", "content": "hi"}]):
        events.append(event)
        if event.type == "response" and event.data.content == "a":
            assert loop.session_manager.request_stop("conv-1")

    assert [e.data.content for e in events if e.type == "response"] == ["a"]
    assert events[-1].type == "end"
    assert events[-1].data.user_stop is True
    assert loop.session_manager.get_runtime("conv-1") is None


@pytest.mark.asyncio
async def test_new_run_supersedes_active_run(engine_config: EngineConfig) -> None:
    class WaitingProvider:
        async def stream(self, request: ProviderRequest):
            yield TextEvent("waiting")
            await request.cancel_event.wait()

    loop = _loop(WaitingProvider(), [], engine_config)
    first = loop.run("conv-1", [{"role": "user", "content": "one"}])
    assert (await first.__anext__()).data.content == "waiting"

    loop.session_manager.start_loop("conv-1")
    rest = [event async for event in first]

    assert rest[-1].type == "end"
    assert rest[-1].data.user_stop is True


@pytest.mark.asyncio
async def test_permission_then_resume(tmp_path: Path) -> None:
    config = EngineConfig(data_root=tmp_path)
    provider = ScriptedProvider(
        [_tool_pass("c1", "run_command", '{"command": "npm test"}'), _final_pass("Tests pass.")]
    )
    backend = StaticBackend(ToolSource.AGENT, ["run_command"], lambda inv: "5 passed")
    permissions = CommandPermissionService()
    loop = _loop(provider, [backend], config, mode="agent", permissions=permissions)
    messages = [{"role": "user", "content": "run the tests"}]

    first = [event async for event in loop.run("conv-1", messages)]

    [paused] = [e for e in first if e.type == "response" and e.data.tool_call == "permission-required"]
    assert backend.calls == []
    assert first[-1].type == "end"
    request = paused.data.permission_request
    assert request.signature == "npm test"

    permissions.approve("conv-1", request.signature, remember=False)
    record = ToolCallRecord(
        id=paused.data.tool_call_id, name=paused.data.tool_call_name, arguments=paused.data.tool_call_params
    )
    second = [event async for event in loop.run("conv-1", messages, resume_tool_calls=[record])]

    assert len(backend.calls) == 1
    assert backend.calls[0].workspace == tmp_path / "workspaces" / "conv-1"
    assert [e.data.tool_call for e in second if e.type == "response" and e.data.tool_call][:2] == ["running", "end"]
    assert [m["role"] for m in messages] == ["user", "assistant", "tool", "assistant"]
    assert messages[-1]["content"] == "Tests pass."


@pytest.mark.asyncio
async def test_max_tool_calls_stops_the_loop(tmp_path: Path) -> None:
    config = EngineConfig(data_root=tmp_path, max_tool_calls=1)
    provider = ScriptedProvider([_tool_pass("c1", "clock", "{}"), _tool_pass("c2", "clock", "{}")])
    loop = _loop(provider, [StaticBackend(ToolSource.BUILTIN, ["clock"])], config)

    events = [event async for event in loop.run("conv-1", [{"role": "user", "content": "hi"}])]

    assert any(e.type == "response" and e.data.maximum_tool_calls_reached for e in events)
    assert len(provider.requests) == 1
    assert events[-1].type == "end"


@pytest.mark.asyncio
async def test_cancel_event_is_shared_with_provider(engine_config: EngineConfig) -> None:
    provider = ScriptedProvider([_final_pass("hi")])
    loop = _loop(provider, [], engine_config)

    [event async for event in loop.run("conv-1", [{"role": "user", "content": "hi"}])]

    assert isinstance(provider.requests[0].cancel_event, asyncio.Event)
    assert provider.requests[0].workspace is None


@pytest.mark.asyncio
async def test_text_function_call_round_trip_without_native_tools(engine_config: EngineConfig) -> None:
    call_text = '<function_call>{"function_call": {"name": "clock", "arguments": {"tz": "UTC"}}}</function_call>'
    provider = ScriptedProvider(
        [
            [TextEvent("Checking. "), TextEvent(call_text), StopEvent("complete")],
            _final_pass("It is noon."),
        ]
    )
    backend = StaticBackend(ToolSource.BUILTIN, ["clock"], lambda inv: "12:00")
    loop = _loop(provider, [backend], engine_config, supports_function_call=False)
    messages = [{"role": "user", "content": "what time is it?"}]

    events = [event async for event in loop.run("conv-1", messages)]

    phases = [e.data.tool_call for e in events if e.type == "response" and e.data.tool_call]
    assert phases == ["start", "update", "update", "running", "end"]
    shown = "".join(e.data.content or "" for e in events if e.type == "response")
    assert "<function_call>" not in shown
    assert backend.calls[0].arguments == {"tz": "UTC"}

    assert [m["role"] for m in messages] == ["user", "assistant", "user", "assistant"]
    assert "tool_calls" not in messages[1]
    record = format_function_call_record("clock", '{"tz": "UTC"}', "12:00")
    assert messages[1]["content"] == f"Checking. {record}\n"
    assert messages[2] == {"role": "user", "content": LEGACY_CONTINUE_PROMPT}
    assert messages[3] == {"role": "assistant", "content": "It is noon."}

    first, second = provider.requests
    assert first.supports_function_call is False
    assert "<tool_list>" in first.system_prompt
    assert '"name": "clock"' in first.system_prompt
    assert "Available tools:" not in first.system_prompt
    assert second.messages is messages


@pytest.mark.asyncio
async def test_conversation_setting_overrides_engine_function_calling_default(tmp_path: Path) -> None:
    config = EngineConfig(data_root=tmp_path, supports_function_call=False)
    provider = ScriptedProvider([_final_pass("hi"), _final_pass("hi")])
    loop = _loop(provider, [], config)

    [event async for event in loop.run("conv-1", [{"role": "user", "content": "hi"}])]
    await loop.session_manager.store.update_settings("conv-1", {"supports_function_call": True})
    [event async for event in loop.run("conv-1", [{"role": "user", "content": "hi"}])]

    assert [request.supports_function_call for request in provider.requests] == [False, True]
