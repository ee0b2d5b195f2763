"""Exception types and failure classification for the loop engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tether.permissions.service import PermissionRequest


class TetherError(Exception):
    """Base class for errors raised by the engine."""


class ToolNotFoundError(TetherError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool definition not found: {tool_name}")
        self.tool_name = tool_name


class ToolRegistrationConflict(TetherError):
    """A tool name was registered twice by different sources."""


class ToolArgumentsError(TetherError):
    """Tool-call arguments could not be parsed, even after repair."""

    def __init__(self, tool_name: str, raw_arguments: str) -> None:
        super().__init__(f"Invalid JSON arguments for tool {tool_name}: {raw_arguments[:200]}")
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class ToolExecutionError(TetherError):
    """A backend reported a failed tool invocation."""


class ToolCallCancelled(TetherError):
    """The loop was aborted while a tool invocation was in flight."""


class CommandPermissionRequiredError(TetherError):
    """A shell command needs operator approval before it can run.

    This is control flow rather than a failure: the caller surfaces
    ``request`` as an approval prompt, records the decision in the approval
    cache and starts a new loop.
    """

    def __init__(self, request: "PermissionRequest") -> None:
        super().__init__(f"Permission required to run: {request.command}")
        self.request = request


@dataclass(frozen=True)
class _ErrorRule:
    needles: tuple[str, ...]
    require_all: bool = False

    def matches(self, message: str) -> bool:
        if self.require_all:
            return all(needle in message for needle in self.needles)
        return any(needle in message for needle in self.needles)


_NON_RETRYABLE_RULES = (
    _ErrorRule(("invalid url", "malformed url")),
    _ErrorRule(("invalid json", "json parse error", "unexpected token")),
    _ErrorRule(("malformed request", "bad request format")),
    _ErrorRule(("unknown tool", "tool definition not found", "tool not found")),
    _ErrorRule(("permission denied", "explicitly"), require_all=True),
    _ErrorRule(("authentication failed", "invalid credentials"), require_all=True),
)

_RETRYABLE_HINTS = ("validation", "missing required", "timed out", "timeout", "rate limit")


def is_non_retryable_error(error: BaseException | str | Any) -> bool:
    """Return True when continuing the loop after this tool failure is pointless.

    Argument validation problems stay retryable: the model can correct them
    on its next turn.
    """

    message = str(error).lower()
    if not message:
        return False
    if any(hint in message for hint in _RETRYABLE_HINTS):
        return False
    return any(rule.matches(message) for rule in _NON_RETRYABLE_RULES)


__all__ = [
    "CommandPermissionRequiredError",
    "TetherError",
    "ToolArgumentsError",
    "ToolCallCancelled",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistrationConflict",
    "is_non_retryable_error",
]
