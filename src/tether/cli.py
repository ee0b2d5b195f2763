"""Command-line entrypoint: run one agent-loop turn and print its events."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Sequence

from rich.console import Console
from rich.prompt import Prompt
from rich.text import Text

from tether.acp.client import TetherAcpClient
from tether.acp.provider import AcpAgentProvider
from tether.acp.terminal import AcpTerminalManager
from tether.config import EngineConfig, load_engine_config
from tether.events import EndData, ErrorData, ResponseData
from tether.log_utils import build_log_config, configure_logging, log_event, parse_level
from tether.loop.handler import AgentLoop
from tether.loop.orchestrator import consume_stream, stream_through_channel
from tether.messages import ChatMessage, ToolCallRecord
from tether.permissions.service import CommandPermissionService, PermissionRequest
from tether.providers.base import Provider
from tether.providers.model import PydanticAIProvider
from tether.session.manager import SessionManager
from tether.session.store import JsonConversationStore
from tether.sink import EventSink
from tether.tools.browser import BrowserToolBackend
from tether.tools.manager import ToolManager
from tether.tools.mcp import McpToolBackend, build_mcp_servers
from tether.tools.workspace import AgentToolBackend

logger = logging.getLogger(__name__)

_TOOL_STYLES = {
    "end": "green",
    "running": "yellow",
    "start": "yellow",
    "error": "red",
    "permission-required": "magenta",
}


class ConsoleConsumer:
    """Prints loop events and remembers a call that is waiting for approval."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self.pending: PermissionRequest | None = None
        self.pending_call: ToolCallRecord | None = None
        self.user_stop = False
        self.failed = False

    async def handle_response(self, data: ResponseData) -> None:
        if data.content:
            self.console.print(data.content, end="", markup=False, highlight=False)
        if data.reasoning_content:
            self.console.print(Text(data.reasoning_content, style="dim italic"), end="")
        if data.tool_call and data.tool_call != "update":
            style = _TOOL_STYLES.get(data.tool_call, "cyan")
            detail = data.tool_call_params if data.tool_call in ("running", "permission-required") else ""
            label = f"\n[tool {data.tool_call}] {data.tool_call_name} {detail or ''}".rstrip()
            self.console.print(Text(label, style=style))
            if data.tool_call in ("end", "error") and data.tool_call_response:
                self.console.print(Text(str(data.tool_call_response)[:2000], style="dim"))
        if data.permission_request is not None:
            self.pending = data.permission_request
            self.pending_call = ToolCallRecord(
                id=data.tool_call_id or "",
                name=data.tool_call_name or "",
                arguments=data.tool_call_params or "",
            )
        if data.maximum_tool_calls_reached:
            self.console.print(Text("\n[maximum tool calls reached]", style="red"))

    async def handle_error(self, data: ErrorData) -> None:
        self.failed = True
        self.console.print(Text(f"\n[error] {data.error}", style="bold red"))

    async def handle_end(self, data: EndData) -> None:
        self.user_stop = data.user_stop
        self.console.print()


def load_mcp_config(path: str | None) -> List[Any]:
    """Read a JSON array of ``mcpServers`` entries (stdio/http/sse)."""
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError("mcp-config must be a JSON array")
    return [entry for entry in data if isinstance(entry, dict)]


async def _ask_approval(console: Console, request: PermissionRequest) -> str:
    console.print(
        Text(f"Command needs approval ({request.risk} risk): {request.command}", style="bold magenta")
    )
    return await asyncio.to_thread(
        Prompt.ask, "Allow?", choices=["once", "always", "deny"], default="deny", console=console
    )


async def _acp_permission(console: Console, session_id: str, tool_call: Any, options: Sequence[Any]) -> str | None:
    title = getattr(tool_call, "title", None) or getattr(tool_call, "tool_call_id", "tool")
    console.print(Text(f"Agent requests permission: {title}", style="bold magenta"))
    for index, option in enumerate(options, start=1):
        console.print(f"{index}) {getattr(option, 'name', option.option_id)}")
    choice = await asyncio.to_thread(Prompt.ask, "Choice (empty to deny)", default="", console=console)
    if choice.isdigit() and 1 <= int(choice) <= len(options):
        return options[int(choice) - 1].option_id
    return None


async def run_turn(args: argparse.Namespace, config: EngineConfig, console: Console) -> int:
    conversation_id = args.conversation or uuid.uuid4().hex[:12]
    store = JsonConversationStore()
    sink = EventSink()
    mode = "acp agent" if args.command == "acp" else args.mode
    model_id = args.agent if args.command == "acp" else args.model
    changes: dict[str, Any] = {"chat_mode": mode, "model_id": model_id}
    if args.command == "acp":
        settings = await store.get_settings(conversation_id)
        changes["acp_workdir_map"] = {**settings.acp_workdir_map, model_id: str(Path(args.workdir).resolve())}
    await store.update_settings(conversation_id, changes)

    permissions = CommandPermissionService(policy=config.command_policy)
    mcp_backend = McpToolBackend(build_mcp_servers(load_mcp_config(args.mcp_config)))
    tool_manager = ToolManager(
        [mcp_backend, AgentToolBackend(sink=sink), BrowserToolBackend()],
        permission_service=permissions,
    )
    provider: Provider
    if args.command == "acp":
        provider = AcpAgentProvider(
            args.agent,
            args.agent_args,
            client=TetherAcpClient(
                permission_callback=lambda s, t, o: _acp_permission(console, s, t, o),
                sink=sink,
                max_read_size=config.max_read_size,
                terminals=AcpTerminalManager(
                    permissions=permissions,
                    approval_callback=lambda request: _ask_approval(console, request),
                    sink=sink,
                ),
            ),
        )
    else:
        provider = PydanticAIProvider(args.model)

    sessions = SessionManager(store, data_root=config.data_root)
    loop = AgentLoop(provider, tool_manager, sessions, config=config, sink=sink)
    messages: List[ChatMessage] = [{"role": "user", "content": args.prompt}]
    console.print(Text(f"conversation {conversation_id}", style="dim"))

    resume: List[ToolCallRecord] = []
    consumer = ConsoleConsumer(console)
    try:
        async with mcp_backend:
            while True:
                consumer.pending = consumer.pending_call = None
                events = loop.run(
                    conversation_id,
                    messages,
                    model_id=model_id,
                    system_prompt=args.system_prompt,
                    resume_tool_calls=resume,
                )
                await consume_stream(consumer, stream_through_channel(events, config.stream_queue_size))
                if consumer.pending is None or consumer.pending_call is None:
                    break
                answer = await _ask_approval(console, consumer.pending)
                if answer == "deny":
                    log_event(logger, "cli.permission.denied", signature=consumer.pending.signature)
                    break
                permissions.approve(conversation_id, consumer.pending.signature, remember=answer == "always")
                resume = [consumer.pending_call]
    finally:
        if isinstance(provider, AcpAgentProvider):
            await provider.close()
        await sink.drain()
    if consumer.user_stop:
        return 130
    return 1 if consumer.failed else 0


def check_command(args: argparse.Namespace, config: EngineConfig, console: Console) -> int:
    service = CommandPermissionService(policy=config.command_policy)
    decision = service.check_permission(args.conversation or "cli", args.shell_command)
    console.print_json(
        data={
            "allowed": decision.allowed,
            "reason": decision.reason,
            "risk": decision.risk.level,
            "signature": decision.risk.signature,
        }
    )
    return 0 if decision.allowed else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tether", description="Agentic tool-calling loop engine.")
    parser.add_argument("--conversation", help="Conversation id (default: a new one)")
    parser.add_argument("--log-level", help="Override TETHER_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one turn against a pydantic-ai model")
    run.add_argument("prompt")
    run.add_argument("--model", default="openai:gpt-4o", help="pydantic-ai model name, e.g. openai:gpt-4o")
    run.add_argument("--mode", choices=["chat", "agent"], default="agent")
    run.add_argument("--system-prompt", default=None)
    run.add_argument("--mcp-config", help="JSON file with an array of MCP server entries")

    acp = sub.add_parser("acp", help="Run one turn through an external ACP agent")
    acp.add_argument("prompt")
    acp.add_argument("--workdir", default=".", help="Working directory handed to the agent")
    acp.add_argument("agent", help="Agent program to launch")
    acp.add_argument("agent_args", nargs=argparse.REMAINDER, help="Arguments for the agent")
    acp.set_defaults(system_prompt=None, mcp_config=None)

    check = sub.add_parser("check-command", help="Show the permission decision for a shell command")
    check.add_argument("shell_command")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_config = build_log_config()
    if args.log_level:
        log_config = replace(log_config, level=parse_level(args.log_level, log_config.level))
    configure_logging(log_config)
    config = load_engine_config()
    console = Console()

    if args.command == "check-command":
        return check_command(args, config, console)
    try:
        return asyncio.run(run_turn(args, config, console))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
