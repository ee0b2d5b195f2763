"""Agent Client Protocol boundary: content mapping, file-system sandbox, agent provider."""

from tether.acp.client import PermissionCallback, TetherAcpClient
from tether.acp.filesystem import AcpFsHandler
from tether.acp.mapper import AcpContentMapper, AcpToolCallState, MappedContent, format_tool_call_content
from tether.acp.provider import AcpAgentProvider, map_stop_reason

__all__ = [
    "AcpAgentProvider",
    "AcpContentMapper",
    "AcpFsHandler",
    "AcpToolCallState",
    "MappedContent",
    "PermissionCallback",
    "TetherAcpClient",
    "format_tool_call_content",
    "map_stop_reason",
]
