from __future__ import annotations

import json

import pytest

from tether.errors import CommandPermissionRequiredError, ToolNotFoundError, ToolRegistrationConflict
from tether.permissions.service import CommandPermissionService
from tether.tools.base import ToolInvocation
from tether.tools.manager import OFFLOAD_PROMPT, ToolManager
from tether.tools.registry import DEFAULT_TARGET, ToolEntry, ToolRegistry, ToolSource
from tests.utils import StaticBackend


def test_registry_routes_known_and_unknown_tools() -> None:
    registry = ToolRegistry()
    registry.register(ToolEntry(name="read_file", source=ToolSource.AGENT))
    registry.register(ToolEntry(name="search", source=ToolSource.MCP, server_name="docs"))

    assert registry.resolve_tool_route("read_file").target is ToolSource.AGENT
    assert registry.resolve_tool_route("search").server_name == "docs"
    unknown = registry.resolve_tool_route("never_registered")
    assert unknown.target is DEFAULT_TARGET is ToolSource.MCP


def test_registry_marks_command_tools() -> None:
    registry = ToolRegistry()
    registry.register(ToolEntry(name="run_command", source=ToolSource.AGENT))

    assert registry.resolve_tool_route("run_command").permission_type == "command"
    assert registry.resolve_tool_route("read_file").permission_type is None


def test_registry_refuses_cross_source_duplicates() -> None:
    registry = ToolRegistry()
    registry.register(ToolEntry(name="fetch", source=ToolSource.BROWSER))

    with pytest.raises(ToolRegistrationConflict):
        registry.register(ToolEntry(name="fetch", source=ToolSource.MCP))


@pytest.mark.asyncio
async def test_chat_mode_offers_only_mcp_and_builtin() -> None:
    manager = ToolManager(
        [
            StaticBackend(ToolSource.MCP, ["search"]),
            StaticBackend(ToolSource.AGENT, ["read_file"]),
            StaticBackend(ToolSource.BROWSER, ["browser_fetch"]),
            StaticBackend(ToolSource.BUILTIN, ["clock"]),
        ]
    )

    chat = await manager.get_all_tool_definitions("chat")
    agent = await manager.get_all_tool_definitions("agent")

    assert [spec.name for spec in chat] == ["search", "clock"]
    assert {spec.name for spec in agent} == {"search", "read_file", "browser_fetch", "clock"}
    assert agent[0].name == "search"


@pytest.mark.asyncio
async def test_name_conflict_keeps_higher_priority_source() -> None:
    mcp = StaticBackend(ToolSource.MCP, ["read_file"], server_name="fs")
    agent = StaticBackend(ToolSource.AGENT, ["read_file"])
    manager = ToolManager([mcp, agent])

    [spec] = await manager.get_all_tool_definitions("agent")
    result = await manager.call_tool(ToolInvocation(tool_call_id="c1", name="read_file", arguments={}))

    assert spec.source is ToolSource.AGENT
    assert result.content == "read_file ok"
    assert agent.calls and not mcp.calls


@pytest.mark.asyncio
async def test_enabled_tools_filters_mcp_but_not_workspace_tools() -> None:
    manager = ToolManager(
        [StaticBackend(ToolSource.MCP, ["search", "translate"]), StaticBackend(ToolSource.AGENT, ["list_files"])]
    )

    specs = await manager.get_all_tool_definitions("agent", enabled_tools=["translate"])

    assert {spec.name for spec in specs} == {"translate", "list_files"}


@pytest.mark.asyncio
async def test_call_attaches_server_name() -> None:
    manager = ToolManager([StaticBackend(ToolSource.MCP, ["search"], server_name="docs")])
    await manager.get_all_tool_definitions("chat")

    result = await manager.call_tool(ToolInvocation(tool_call_id="c1", name="search", arguments={}))

    assert result.metadata["server_name"] == "docs"


@pytest.mark.asyncio
async def test_unknown_tool_without_mcp_backend_raises() -> None:
    manager = ToolManager([StaticBackend(ToolSource.AGENT, ["read_file"])])
    await manager.get_all_tool_definitions("agent")

    with pytest.raises(ToolNotFoundError):
        await manager.call_tool(ToolInvocation(tool_call_id="c1", name="nope", arguments={}))


@pytest.mark.asyncio
async def test_command_tool_is_gated_before_backend_runs() -> None:
    backend = StaticBackend(ToolSource.AGENT, ["run_command"])
    permissions = CommandPermissionService()
    manager = ToolManager([backend], permission_service=permissions)
    await manager.get_all_tool_definitions("agent")
    invocation = ToolInvocation(
        tool_call_id="c1", name="run_command", arguments={"command": "npm test"}, conversation_id="conv"
    )

    with pytest.raises(CommandPermissionRequiredError):
        await manager.call_tool(invocation)
    assert backend.calls == []

    permissions.approve("conv", "npm test", remember=False)
    await manager.call_tool(invocation)
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_whitelisted_command_runs_without_prompt() -> None:
    backend = StaticBackend(ToolSource.AGENT, ["run_command"])
    manager = ToolManager([backend])
    await manager.get_all_tool_definitions("agent")

    await manager.call_tool(
        ToolInvocation(tool_call_id="c1", name="run_command", arguments={"command": "ls -la"}, conversation_id="conv")
    )

    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_tool_system_prompt_lists_tools() -> None:
    manager = ToolManager([StaticBackend(ToolSource.BUILTIN, ["clock"])])
    assert manager.build_tool_system_prompt("Be brief.") == "Be brief."

    await manager.get_all_tool_definitions("chat")
    prompt = manager.build_tool_system_prompt("Be brief.")

    assert prompt.splitlines()[:3] == ["Be brief.", "Available tools:", "- clock: clock from builtin"]
    assert prompt.endswith(OFFLOAD_PROMPT)


@pytest.mark.asyncio
async def test_tool_system_prompt_without_function_calling_carries_schemas() -> None:
    manager = ToolManager([StaticBackend(ToolSource.BUILTIN, ["clock"])])
    await manager.get_all_tool_definitions("chat")

    prompt = manager.build_tool_system_prompt("Be brief.", supports_function_call=False)

    assert prompt.startswith("Be brief.\nYou can call external tools.")
    tool_list = prompt.split("<tool_list>\n", 1)[1].split("\n</tool_list>", 1)[0]
    assert json.loads(tool_list) == [
        {"name": "clock", "description": "clock from builtin", "parameters": {"type": "object", "properties": {}}}
    ]
    assert '{"function_call": {"name": "tool_name", "arguments": {"param": "value"}}}' in prompt
    assert "Available tools:" not in prompt
    assert prompt.endswith(OFFLOAD_PROMPT)
