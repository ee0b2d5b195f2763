from __future__ import annotations

from types import SimpleNamespace

from tether.acp.mapper import AcpContentMapper
from tether.events import ReasoningEvent, TextEvent, ToolCallChunkEvent, ToolCallEndEvent, ToolCallStartEvent


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_update(kind: str, tool_call_id: str, *, title=None, status=None, fragments=()) -> SimpleNamespace:
    content = [SimpleNamespace(type="content", content=_text(fragment)) for fragment in fragments]
    return SimpleNamespace(
        session_update=kind, tool_call_id=tool_call_id, title=title, status=status, content=content or None
    )


def test_message_and_thought_chunks() -> None:
    mapper = AcpContentMapper()

    text = mapper.map_update("s1", SimpleNamespace(session_update="agent_message_chunk", content=_text("hi")))
    thought = mapper.map_update("s1", SimpleNamespace(session_update="agent_thought_chunk", content=_text("hmm")))

    assert text.events == [TextEvent(content="hi")]
    assert thought.events == [ReasoningEvent(content="hmm")]


def test_tool_call_fragments_are_concatenated() -> None:
    mapper = AcpContentMapper()

    start = mapper.map_update("s1", _tool_update("tool_call", "t1", title="Read file", status="pending"))
    mapper.map_update("s1", _tool_update("tool_call_update", "t1", fragments=['{"path": ']))
    done = mapper.map_update(
        "s1", _tool_update("tool_call_update", "t1", status="completed", fragments=['"a.txt"}'])
    )

    assert start.events[0] == ToolCallStartEvent(tool_call_id="t1", tool_call_name="Read file")
    assert ToolCallChunkEvent(tool_call_id="t1", fragment='"a.txt"}') in done.events
    assert done.events[-1] == ToolCallEndEvent(tool_call_id="t1", complete_arguments='{"path": "a.txt"}')
    assert mapper.active_tool_calls("s1") == []


def test_same_tool_call_id_in_two_sessions_is_isolated() -> None:
    mapper = AcpContentMapper()

    mapper.map_update("s1", _tool_update("tool_call", "call-1", title="one"))
    mapper.map_update("s2", _tool_update("tool_call", "call-1", title="two"))
    mapper.map_update("s1", _tool_update("tool_call_update", "call-1", fragments=["AAA"]))
    mapper.map_update("s2", _tool_update("tool_call_update", "call-1", fragments=["BBB"]))

    end_one = mapper.map_update("s1", _tool_update("tool_call_update", "call-1", status="failed"))

    assert end_one.events[-1] == ToolCallEndEvent(tool_call_id="call-1", complete_arguments="AAA")
    [remaining] = mapper.active_tool_calls("s2")
    assert remaining.arguments == "BBB"
    assert remaining.tool_name == "two"


def test_status_change_emits_reasoning_line() -> None:
    mapper = AcpContentMapper()
    mapper.map_update("s1", _tool_update("tool_call", "t1", title="Run tests", status="pending"))

    mapped = mapper.map_update("s1", _tool_update("tool_call_update", "t1", status="in_progress"))

    assert ReasoningEvent(content="Tool call - Run tests - in progress") in mapped.events


def test_plan_update_is_returned_and_summarized() -> None:
    mapper = AcpContentMapper()
    update = SimpleNamespace(
        session_update="plan",
        entries=[SimpleNamespace(content="write tests", status="pending", priority="high")],
    )

    mapped = mapper.map_update("s1", update)

    assert mapped.plan is not None
    assert mapped.plan[0].content == "write tests"
    assert mapped.events == [ReasoningEvent(content="Plan updated: write tests (pending)")]


def test_clear_session_drops_only_that_session() -> None:
    mapper = AcpContentMapper()
    mapper.map_update("s1", _tool_update("tool_call", "t1", title="a"))
    mapper.map_update("s2", _tool_update("tool_call", "t1", title="b"))

    mapper.clear_session("s1")

    assert mapper.active_tool_calls("s1") == []
    assert len(mapper.active_tool_calls("s2")) == 1
