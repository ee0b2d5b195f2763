from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Dict, Iterable, List

from tether.events import StreamEvent
from tether.providers.base import ProviderRequest
from tether.session.store import ConversationSettings
from tether.tools.base import ToolInvocation, ToolResult, ToolSpec
from tether.tools.registry import ToolSource


class MemoryStore:
    """In-memory ConversationStore that counts writes."""

    def __init__(self, **settings: Any) -> None:
        self.settings: Dict[str, ConversationSettings] = {}
        self.defaults = settings
        self.updates: List[tuple[str, Dict[str, Any]]] = []

    async def get_settings(self, conversation_id: str) -> ConversationSettings:
        return self.settings.get(conversation_id) or ConversationSettings(**self.defaults)

    async def update_settings(self, conversation_id: str, changes: Dict[str, Any]) -> None:
        self.updates.append((conversation_id, changes))
        current = await self.get_settings(conversation_id)
        self.settings[conversation_id] = current.model_copy(update=changes)


class StaticBackend:
    """Backend advertising fixed tool names and answering with a callable."""

    def __init__(
        self,
        source: ToolSource,
        names: Iterable[str],
        handler: Callable[[ToolInvocation], Any] | None = None,
        server_name: str | None = None,
    ) -> None:
        self.source = source
        self.names = list(names)
        self.handler = handler or (lambda inv: f"{inv.name} ok")
        self.server_name = server_name
        self.calls: List[ToolInvocation] = []

    async def list_definitions(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name=name,
                description=f"{name} from {self.source.value}",
                parameters={"type": "object", "properties": {}},
                source=self.source,
                server_name=self.server_name,
            )
            for name in self.names
        ]

    async def call(self, invocation: ToolInvocation) -> ToolResult:
        self.calls.append(invocation)
        result = self.handler(invocation)
        if hasattr(result, "__await__"):
            result = await result
        return ToolResult(content=result, raw=result)


class ScriptedProvider:
    """Provider that replays one list of stream events per pass."""

    def __init__(self, passes: List[List[StreamEvent]]) -> None:
        self.passes = list(passes)
        self.requests: List[ProviderRequest] = []

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        events = self.passes.pop(0) if self.passes else []
        for event in events:
            yield event
