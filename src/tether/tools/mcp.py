"""MCP tool backend built on pydantic-ai's MCP server clients.

Server configs follow the ACP ``mcpServers`` shape (``type`` of stdio, http or
sse) so the same entries can be handed to an external agent or used locally.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Tuple

from pydantic_ai import mcp as mcp_client
from pydantic_ai.exceptions import ModelRetry

from tether.errors import ToolExecutionError, ToolNotFoundError
from tether.log_utils import log_event
from tether.tools.base import ToolInvocation, ToolResult, ToolSpec
from tether.tools.registry import ToolSource

logger = logging.getLogger(__name__)


def _field(server: Any, key: str) -> Any:
    if isinstance(server, dict):
        return server.get(key)
    return getattr(server, key, None)


def _pairs(items: Any) -> Dict[str, str]:
    """Convert ``[{name, value}]`` lists (dicts or models) into a mapping."""
    result: Dict[str, str] = {}
    for item in items or []:
        result[str(_field(item, "name"))] = str(_field(item, "value"))
    return result


def build_mcp_servers(configs: List[Any] | None) -> List[mcp_client.MCPServer]:
    """Construct pydantic-ai MCP servers from ``mcpServers`` entries.

    Entries with an unknown type or a missing command/url are skipped.
    """
    servers: List[mcp_client.MCPServer] = []
    for config in configs or []:
        stype = _field(config, "type") or ("stdio" if _field(config, "command") else None)
        name = _field(config, "name") or None
        if stype == "stdio" and _field(config, "command"):
            servers.append(
                mcp_client.MCPServerStdio(
                    _field(config, "command"),
                    list(_field(config, "args") or []),
                    env=_pairs(_field(config, "env")) or None,
                    id=name,
                )
            )
        elif stype == "http" and _field(config, "url"):
            servers.append(
                mcp_client.MCPServerStreamableHTTP(
                    _field(config, "url"), headers=_pairs(_field(config, "headers")) or None, id=name
                )
            )
        elif stype == "sse" and _field(config, "url"):
            servers.append(
                mcp_client.MCPServerSSE(_field(config, "url"), headers=_pairs(_field(config, "headers")) or None, id=name)
            )
        else:
            log_event(logger, "mcp.server.skipped", level=logging.WARNING, name=name, type=stype)
    return servers


def _server_name(server: Any, index: int) -> str:
    return getattr(server, "id", None) or f"mcp{index}"


class McpToolBackend:
    """Lists and calls tools on a set of MCP servers.

    Use as an async context manager so server connections stay open across
    calls; outside a context each call opens and closes its own connection.
    """

    source = ToolSource.MCP

    def __init__(self, servers: List[Any]) -> None:
        self.servers = list(servers)
        self._routes: Dict[str, Tuple[Any, str]] = {}
        self._stack: AsyncExitStack | None = None

    async def __aenter__(self) -> "McpToolBackend":
        self._stack = AsyncExitStack()
        for server in self.servers:
            await self._stack.enter_async_context(server)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        stack, self._stack = self._stack, None
        if stack is not None:
            await stack.aclose()

    async def list_definitions(self) -> List[ToolSpec]:
        specs: List[ToolSpec] = []
        routes: Dict[str, Tuple[Any, str]] = {}
        for index, server in enumerate(self.servers):
            name = _server_name(server, index)
            try:
                tools = await server.list_tools()
            except Exception as exc:  # noqa: BLE001 - one broken server must not hide the others
                log_event(logger, "mcp.list_tools.error", level=logging.WARNING, server=name, error=str(exc))
                continue
            for tool in tools:
                if tool.name in routes:
                    log_event(logger, "mcp.tool.duplicate", level=logging.WARNING, server=name, tool=tool.name)
                    continue
                routes[tool.name] = (server, name)
                specs.append(
                    ToolSpec(
                        name=tool.name,
                        description=tool.description or "",
                        parameters=dict(tool.inputSchema or {"type": "object", "properties": {}}),
                        source=ToolSource.MCP,
                        server_name=name,
                    )
                )
        self._routes = routes
        return specs

    def server_for(self, tool_name: str) -> str | None:
        route = self._routes.get(tool_name)
        return route[1] if route else None

    async def call(self, invocation: ToolInvocation) -> ToolResult:
        route = self._routes.get(invocation.name)
        if route is None:
            raise ToolNotFoundError(invocation.name)
        server, server_name = route
        try:
            result = await server.direct_call_tool(invocation.name, invocation.arguments)
        except ModelRetry as exc:
            raise ToolExecutionError(str(exc)) from exc
        return ToolResult(content=result, raw=result, metadata={"server_name": server_name})


__all__ = ["McpToolBackend", "build_mcp_servers"]
