"""Command whitelist and risk patterns.

These are policy data rather than algorithm: the permission service only
relies on the order in which they are consulted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, Literal, Pattern

RiskLevel = Literal["low", "medium", "high", "critical"]

SAFE_COMMANDS = frozenset(
    {"ls", "pwd", "echo", "cat", "head", "tail", "wc", "grep", "diff", "find", "sort", "uniq", "which", "whoami"}
)

SAFE_SIGNATURES = frozenset(
    {"git status", "git diff", "git log", "git show", "git branch", "git remote"}
)

DESTRUCTIVE_PATTERN = re.compile(
    r"\brm\s+-[a-zA-Z]*r[a-zA-Z]*f|\brm\s+-[a-zA-Z]*f[a-zA-Z]*r"
    r"|\bmkfs(\.\w+)?\b|\bdd\s+if=|\bformat\s+[a-zA-Z]:"
    r"|:\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;"
    r"|\bchmod\s+(-R\s+)?777\s+/"
    r"|>\s*/dev/sd[a-z]"
)
PRIVILEGE_PATTERN = re.compile(r"(^|\s)(sudo|doas|su)(\s|$)")
NETWORK_PATTERN = re.compile(r"\b(curl|wget|nc|netcat|telnet|ssh|scp)\b")
CHAINING_PATTERN = re.compile(r"&&|\|\||;|\$\(|`|\|")
RISKY_PATTERN = re.compile(r"\b(rm|rmdir|mv|chmod|chown|docker|podman|kubectl|kill|pkill)\b")
PACKAGE_PATTERN = re.compile(
    r"\b(install|uninstall|add|remove|upgrade|update)\b"
    r"|\bgit\s+(pull|push|checkout|switch|merge|rebase|reset|commit)\b"
    r"|\b(npm|pnpm|yarn|bun|pip|pip3|uv|cargo|make|gradle|mvn|go)\b"
)


@dataclass(frozen=True)
class CommandPolicy:
    """Whitelist and ordered risk rules used by ``CommandPermissionService``."""

    safe_commands: frozenset[str] = SAFE_COMMANDS
    safe_signatures: frozenset[str] = SAFE_SIGNATURES
    destructive_patterns: tuple[Pattern[str], ...] = (DESTRUCTIVE_PATTERN,)
    critical_patterns: tuple[Pattern[str], ...] = (PRIVILEGE_PATTERN, NETWORK_PATTERN, CHAINING_PATTERN)
    high_patterns: tuple[Pattern[str], ...] = (RISKY_PATTERN,)
    medium_patterns: tuple[Pattern[str], ...] = (PACKAGE_PATTERN,)

    def with_safe_commands(self, commands: Iterable[str]) -> "CommandPolicy":
        return replace(self, safe_commands=self.safe_commands | frozenset(commands))

    def is_whitelisted(self, base_command: str, signature: str) -> bool:
        return signature in self.safe_signatures or base_command in self.safe_commands


__all__ = ["CommandPolicy", "RiskLevel", "SAFE_COMMANDS", "SAFE_SIGNATURES"]
