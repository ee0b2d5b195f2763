from tether.session.manager import LoopRuntime, SessionManager, WorkspaceContext
from tether.session.store import ConversationSettings, ConversationStore, ExecutionMode, JsonConversationStore

__all__ = [
    "ConversationSettings",
    "ConversationStore",
    "ExecutionMode",
    "JsonConversationStore",
    "LoopRuntime",
    "SessionManager",
    "WorkspaceContext",
]
