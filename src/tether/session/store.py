"""Conversation settings persistence.

The engine only needs to read a conversation's settings and write back a
few resolved fields (the agent workspace path). ``ConversationStore`` is
that interface; ``JsonConversationStore`` keeps one ``settings.json`` per
conversation under the sessions directory.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tether.log_utils import log_event
from tether.paths import safe_component, sessions_dir

logger = logging.getLogger(__name__)

ExecutionMode = Literal["chat", "agent", "acp agent"]
SETTINGS_FILE = "settings.json"


class ConversationSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chat_mode: ExecutionMode = "chat"
    provider_id: str = ""
    model_id: str = ""
    system_prompt: str | None = None
    enabled_tools: list[str] | None = None
    agent_workspace_path: str | None = None
    acp_workdir_map: Dict[str, str] = Field(default_factory=dict)
    # None follows the engine default
    supports_function_call: bool | None = None


class ConversationStore(Protocol):
    async def get_settings(self, conversation_id: str) -> ConversationSettings: ...

    async def update_settings(self, conversation_id: str, changes: Dict[str, Any]) -> None: ...


class JsonConversationStore:
    """File-backed ``ConversationStore``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or sessions_dir()
        self.root.mkdir(parents=True, exist_ok=True)

    def _settings_path(self, conversation_id: str) -> Path:
        directory = self.root / safe_component(conversation_id)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / SETTINGS_FILE

    async def get_settings(self, conversation_id: str) -> ConversationSettings:
        path = self._settings_path(conversation_id)
        if not path.exists():
            return ConversationSettings()
        try:
            return ConversationSettings.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            log_event(
                logger,
                "session.settings.invalid",
                level=logging.WARNING,
                conversation_id=conversation_id,
                error=str(exc),
            )
            return ConversationSettings()

    async def update_settings(self, conversation_id: str, changes: Dict[str, Any]) -> None:
        current = await self.get_settings(conversation_id)
        updated = ConversationSettings.model_validate({**current.model_dump(), **changes})
        path = self._settings_path(conversation_id)
        path.write_text(json.dumps(updated.model_dump(mode="json"), indent=2), encoding="utf-8")
        log_event(logger, "session.settings.updated", conversation_id=conversation_id, fields=sorted(changes))

    async def save_settings(self, conversation_id: str, settings: ConversationSettings) -> None:
        await self.update_settings(conversation_id, settings.model_dump())

    def delete(self, conversation_id: str) -> None:
        shutil.rmtree(self.root / safe_component(conversation_id), ignore_errors=True)


__all__ = ["ConversationSettings", "ConversationStore", "ExecutionMode", "JsonConversationStore"]
