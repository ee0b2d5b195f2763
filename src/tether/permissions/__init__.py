from tether.permissions.cache import ApprovalCache
from tether.permissions.policy import CommandPolicy, RiskLevel
from tether.permissions.service import (
    CommandPermissionService,
    CommandRisk,
    PermissionDecision,
    PermissionRequest,
    assess_command_risk,
    extract_command_signature,
)

__all__ = [
    "ApprovalCache",
    "CommandPermissionService",
    "CommandPolicy",
    "CommandRisk",
    "PermissionDecision",
    "PermissionRequest",
    "RiskLevel",
    "assess_command_risk",
    "extract_command_signature",
]
