from tether.loop.handler import AgentLoop
from tether.loop.orchestrator import LoopConsumer, consume_stream, stream_through_channel
from tether.loop.processor import ToolCallProcessor
from tether.loop.state import LoopState, await_with_cancel

__all__ = [
    "AgentLoop",
    "LoopConsumer",
    "LoopState",
    "ToolCallProcessor",
    "await_with_cancel",
    "consume_stream",
    "stream_through_channel",
]
