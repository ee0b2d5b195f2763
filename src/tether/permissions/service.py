"""Risk assessment and approval gating for shell commands.

Precedence is fixed: the static whitelist is consulted first, then the
approval cache, and only then does the risk assessment decide that the
operator must be asked.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal

from tether.errors import CommandPermissionRequiredError
from tether.log_utils import log_event
from tether.permissions.cache import ApprovalCache
from tether.permissions.policy import CommandPolicy, RiskLevel

logger = logging.getLogger(__name__)

DecisionReason = Literal["whitelist", "cache", "permission", "invalid"]

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


@dataclass(frozen=True)
class CommandRisk:
    level: RiskLevel
    signature: str
    base_command: str = ""


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: DecisionReason
    risk: CommandRisk


@dataclass(frozen=True)
class PermissionRequest:
    """What the operator is asked to approve."""

    conversation_id: str
    tool_call_id: str
    tool_name: str
    command: str
    signature: str
    risk: RiskLevel
    description: str = ""


def _command_tokens(command: str) -> list[str]:
    tokens = command.strip().split()
    while tokens and _ASSIGNMENT.match(tokens[0]):
        tokens.pop(0)
    return tokens


def extract_base_command(command: str) -> str:
    tokens = _command_tokens(command)
    return tokens[0] if tokens else ""


def extract_command_signature(command: str, policy: CommandPolicy | None = None) -> str:
    """Reduce a command to its executable and primary subcommand.

    ``git pull origin main`` becomes ``git pull``. Destructive commands are
    kept whole so ``rm -rf /`` never shares a cache key with a harmless
    ``rm`` invocation; likewise a flag in second position keeps its operand.
    """

    policy = policy or CommandPolicy()
    tokens = _command_tokens(command)
    if not tokens:
        return ""
    normalized = " ".join(tokens)
    if any(pattern.search(normalized) for pattern in policy.destructive_patterns):
        return normalized
    parts = tokens[:2]
    if len(tokens) > 2 and tokens[1].startswith("-"):
        parts.append(tokens[2])
    return " ".join(parts)


def assess_command_risk(command: str, policy: CommandPolicy | None = None) -> CommandRisk:
    """Classify a command without touching any approval state."""

    policy = policy or CommandPolicy()
    text = command.strip()
    base = extract_base_command(text)
    signature = extract_command_signature(text, policy)
    if not base:
        return CommandRisk(level="critical", signature="", base_command="")
    if any(pattern.search(text) for pattern in (*policy.destructive_patterns, *policy.critical_patterns)):
        return CommandRisk(level="critical", signature=signature, base_command=base)
    if policy.is_whitelisted(base, signature):
        return CommandRisk(level="low", signature=signature, base_command=base)
    if any(pattern.search(text) for pattern in policy.high_patterns):
        return CommandRisk(level="high", signature=signature, base_command=base)
    if any(pattern.search(text) for pattern in policy.medium_patterns):
        return CommandRisk(level="medium", signature=signature, base_command=base)
    return CommandRisk(level="medium", signature=signature, base_command=base)


class CommandPermissionService:
    """Decide whether a shell command may run in a conversation."""

    def __init__(self, cache: ApprovalCache | None = None, policy: CommandPolicy | None = None) -> None:
        self.cache = cache or ApprovalCache()
        self.policy = policy or CommandPolicy()

    def extract_command_signature(self, command: str) -> str:
        return extract_command_signature(command, self.policy)

    def assess_command_risk(self, command: str) -> CommandRisk:
        return assess_command_risk(command, self.policy)

    def check_permission(self, conversation_id: str, command: str) -> PermissionDecision:
        risk = self.assess_command_risk(command)
        if not risk.base_command:
            decision = PermissionDecision(allowed=False, reason="invalid", risk=risk)
        elif risk.level == "low" and self.policy.is_whitelisted(risk.base_command, risk.signature):
            decision = PermissionDecision(allowed=True, reason="whitelist", risk=risk)
        elif self.cache.is_approved(conversation_id, risk.signature):
            decision = PermissionDecision(allowed=True, reason="cache", risk=risk)
        else:
            decision = PermissionDecision(allowed=False, reason="permission", risk=risk)
        log_event(
            logger,
            "permission.check",
            level=logging.DEBUG,
            conversation_id=conversation_id,
            signature=risk.signature,
            risk=risk.level,
            allowed=decision.allowed,
            reason=decision.reason,
        )
        return decision

    def require_permission(
        self,
        conversation_id: str,
        command: str,
        *,
        tool_call_id: str = "",
        tool_name: str = "run_command",
    ) -> PermissionDecision:
        """Return an allowing decision or raise ``CommandPermissionRequiredError``."""

        decision = self.check_permission(conversation_id, command)
        if decision.allowed:
            return decision
        raise CommandPermissionRequiredError(
            PermissionRequest(
                conversation_id=conversation_id,
                tool_call_id=tool_call_id,
                tool_name=tool_name,
                command=command,
                signature=decision.risk.signature,
                risk=decision.risk.level,
                description=_describe(decision),
            )
        )

    def approve(self, conversation_id: str, signature: str, remember: bool) -> None:
        self.cache.approve(conversation_id, signature, remember)

    def clear_conversation(self, conversation_id: str) -> None:
        self.cache.clear_conversation(conversation_id)

    def clear_all(self) -> None:
        self.cache.clear_all()


def _describe(decision: PermissionDecision) -> str:
    if decision.reason == "invalid":
        return "Empty command"
    return f"{decision.risk.level} risk command: {decision.risk.signature}"
