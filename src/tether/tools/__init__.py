"""Tool backends, the registry and the tool manager."""

from tether.tools.base import ToolBackend, ToolInvocation, ToolResult, ToolSpec
from tether.tools.browser import BrowserToolBackend
from tether.tools.functions import FunctionToolBackend
from tether.tools.manager import ToolManager
from tether.tools.mcp import McpToolBackend, build_mcp_servers
from tether.tools.registry import ToolEntry, ToolRegistry, ToolRoute, ToolSource
from tether.tools.workspace import AgentToolBackend

__all__ = [
    "AgentToolBackend",
    "BrowserToolBackend",
    "FunctionToolBackend",
    "McpToolBackend",
    "ToolBackend",
    "ToolEntry",
    "ToolInvocation",
    "ToolManager",
    "ToolRegistry",
    "ToolResult",
    "ToolRoute",
    "ToolSource",
    "ToolSpec",
    "build_mcp_servers",
]
