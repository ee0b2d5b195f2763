from __future__ import annotations

import json

import pytest

from tether.events import (
    StopEvent,
    TextEvent,
    ToolCallChunkEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UsageEvent,
)
from tether.message.builder import format_function_call_record
from tether.providers.function_calls import (
    FunctionCallSplitter,
    extract_function_calls,
    parse_function_call,
    parse_function_calls,
)


async def _stream(events):
    for event in events:
        yield event


async def _collect(events) -> list:
    return [event async for event in extract_function_calls(_stream(events))]


@pytest.mark.parametrize(
    "body",
    [
        '{"function_call": {"name": "clock", "arguments": {"tz": "UTC"}}}',
        '{"name": "clock", "arguments": {"tz": "UTC"}}',
        '{"function": {"name": "clock", "arguments": {"tz": "UTC"}}}',
        '{"call": {"name": "clock", "arguments": {"tz": "UTC"}}}',
        '{"function_call": {"name": "clock", "arguments": "{\\"tz\\": \\"UTC\\"}"}}',
    ],
)
def test_parse_accepted_shapes(body: str) -> None:
    call = parse_function_call(body)

    assert call.name == "clock"
    assert json.loads(call.arguments) == {"tz": "UTC"}
    assert call.id.startswith("call_")


def test_parse_repairs_broken_json() -> None:
    call = parse_function_call("{'function_call': {'name': 'clock', 'arguments': {'tz': 'UTC',}}}")

    assert call.name == "clock"
    assert json.loads(call.arguments) == {"tz": "UTC"}


def test_parse_keeps_model_supplied_id_and_defaults_arguments() -> None:
    call = parse_function_call('{"id": "abc", "function_call": {"name": "clock"}}')

    assert (call.id, call.name, call.arguments) == ("abc", "clock", "{}")


def test_parse_skips_history_records_and_nameless_calls() -> None:
    record = format_function_call_record("clock", "{}", "12:00")
    text = f"{record}\n<function_call>{{\"arguments\": {{}}}}</function_call><function_call>  </function_call>"

    assert parse_function_calls(text) == []


def test_parse_finds_every_block_in_order() -> None:
    text = (
        'a <function_call>{"name": "one", "arguments": {}}</function_call>\n'
        'b <function_call>\n{"name": "two", "arguments": {"x": 1}}\n</function_call>'
    )

    assert [call.name for call in parse_function_calls(text)] == ["one", "two"]


def test_splitter_holds_back_tags_split_across_deltas() -> None:
    splitter = FunctionCallSplitter()

    shown = [
        splitter.feed("Let me check. <func"),
        splitter.feed('tion_call>{"name": "clock", '),
        splitter.feed('"arguments": {}}</function_'),
        splitter.feed("call> done"),
        splitter.flush(),
    ]

    assert "".join(shown) == "Let me check.  done"
    assert shown[0] == "Let me check. "
    assert [call.name for call in splitter.calls] == ["clock"]


def test_splitter_shows_unclosed_block_on_flush() -> None:
    splitter = FunctionCallSplitter()

    assert splitter.feed('x <function_call>{"name": "clo') == "x "
    assert splitter.flush() == '<function_call>{"name": "clo'
    assert splitter.calls == []


@pytest.mark.asyncio
async def test_stream_turns_blocks_into_tool_call_events() -> None:
    events = await _collect(
        [
            TextEvent("Checking. <function_call>"),
            TextEvent('{"function_call": {"name": "clock", "arguments": {"tz": "UTC"}}}'),
            TextEvent("</function_call>"),
            UsageEvent(prompt_tokens=4, completion_tokens=2),
            StopEvent("complete"),
        ]
    )

    assert events[0] == TextEvent("Checking. ")
    assert events[1] == UsageEvent(prompt_tokens=4, completion_tokens=2)
    start, chunk, end, stop = events[2:]
    assert isinstance(start, ToolCallStartEvent) and start.tool_call_name == "clock"
    assert isinstance(chunk, ToolCallChunkEvent) and json.loads(chunk.fragment) == {"tz": "UTC"}
    assert isinstance(end, ToolCallEndEvent) and end.complete_arguments == chunk.fragment
    assert start.tool_call_id == chunk.tool_call_id == end.tool_call_id
    assert stop == StopEvent("tool_use")


@pytest.mark.asyncio
async def test_stream_without_blocks_is_unchanged() -> None:
    events = await _collect([TextEvent("a < b"), TextEvent(" and <"), StopEvent("max_tokens")])

    assert "".join(e.content for e in events if isinstance(e, TextEvent)) == "a < b and <"
    assert events[-1] == StopEvent("max_tokens")


@pytest.mark.asyncio
async def test_stream_that_ends_without_stop_flushes_text() -> None:
    events = await _collect([TextEvent("tail <functi")])

    assert "".join(e.content for e in events) == "tail <functi"
