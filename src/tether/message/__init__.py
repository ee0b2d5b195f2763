from tether.message.builder import (
    append_tool_error,
    append_tool_exchange,
    build_post_tool_execution_context,
    generate_tool_call_id,
)
from tether.message.compressor import CompressionResult, compress_to_budget, compress_tool_calls_from_context
from tether.message.tokens import approx_tokens, estimate_messages_tokens

__all__ = [
    "CompressionResult",
    "append_tool_error",
    "append_tool_exchange",
    "approx_tokens",
    "build_post_tool_execution_context",
    "compress_to_budget",
    "compress_tool_calls_from_context",
    "estimate_messages_tokens",
    "generate_tool_call_id",
]
