from __future__ import annotations

from tether.message.compressor import REMOVED_MARKER, compress_to_budget, compress_tool_calls_from_context


def _conversation():
    return [
        {"role": "user", "content": "first"},
        {
            "role": "assistant",
            "content": "checking",
            "tool_calls": [{"id": "a", "type": "function", "function": {"name": "read_file", "arguments": "{}"}}],
        },
        {"role": "tool", "content": "x" * 4000, "tool_call_id": "a"},
        {"role": "assistant", "content": "done"},
        {"role": "user", "content": "second"},
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "b", "type": "function", "function": {"name": "list_files", "arguments": "{}"}}],
        },
        {"role": "tool", "content": "y" * 4000, "tool_call_id": "b"},
    ]


def test_strips_tool_calls_before_latest_user_message() -> None:
    messages = _conversation()

    result = compress_tool_calls_from_context(messages, excess_tokens=10, supports_function_call=True)

    assert result.removed_tool_calls == 1
    assert result.removed_tokens >= 1000
    roles = [m["role"] for m in result.messages]
    assert roles == ["user", "assistant", "assistant", "user", "assistant", "tool"]
    assert "tool_calls" not in result.messages[1]
    assert REMOVED_MARKER.format(name="read_file") in result.messages[1]["content"]
    assert result.messages[-1]["tool_call_id"] == "b"


def test_input_messages_are_not_modified() -> None:
    messages = _conversation()

    compress_tool_calls_from_context(messages, excess_tokens=10, supports_function_call=True)

    assert messages == _conversation()


def test_noop_without_function_calling_or_excess() -> None:
    messages = _conversation()

    assert compress_tool_calls_from_context(messages, 10, False).removed_tool_calls == 0
    assert compress_tool_calls_from_context(messages, 0, True).removed_tool_calls == 0


def test_budget_controls_compression() -> None:
    messages = _conversation()

    assert compress_to_budget(messages, 0, True).removed_tool_calls == 0
    assert compress_to_budget(messages, 100_000, True).removed_tool_calls == 0
    assert compress_to_budget(messages, 1500, True).removed_tool_calls == 1
