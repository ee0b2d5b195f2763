from __future__ import annotations

import pytest

from tether.errors import CommandPermissionRequiredError
from tether.permissions.policy import CommandPolicy
from tether.permissions.service import (
    CommandPermissionService,
    assess_command_risk,
    extract_base_command,
    extract_command_signature,
)


def test_signature_keeps_executable_and_subcommand() -> None:
    assert extract_command_signature("git pull origin main") == "git pull"
    assert extract_command_signature("  npm   install  lodash ") == "npm install"
    assert extract_command_signature("ls") == "ls"


def test_signature_keeps_destructive_commands_whole() -> None:
    assert extract_command_signature("rm -rf /") == "rm -rf /"
    assert extract_command_signature("rm -rf build") != extract_command_signature("rm notes.txt")


def test_base_command_skips_env_assignments() -> None:
    assert extract_base_command("FOO=1 BAR=2 make test") == "make"
    assert extract_base_command("") == ""


@pytest.mark.parametrize(
    ("command", "level"),
    [
        ("ls -la", "low"),
        ("git status", "low"),
        ("git pull origin main", "medium"),
        ("rm notes.txt", "high"),
        ("sudo ls", "critical"),
        ("curl https://example.com", "critical"),
        ("ls && rm -r x", "critical"),
        ("cat a | grep b", "critical"),
        ("rm -rf /", "critical"),
    ],
)
def test_assess_command_risk(command: str, level: str) -> None:
    assert assess_command_risk(command).level == level


def test_whitelisted_command_allowed_without_cache() -> None:
    service = CommandPermissionService()

    decision = service.check_permission("c1", "ls -la")

    assert decision.allowed
    assert decision.reason == "whitelist"


def test_whitelist_wins_over_cached_approval_without_consuming_it() -> None:
    service = CommandPermissionService()
    service.approve("c1", "ls -la", remember=False)

    first = service.check_permission("c1", "ls -la")
    second = service.check_permission("c1", "ls -la")

    assert (first.allowed, first.reason) == (True, "whitelist")
    assert (second.allowed, second.reason) == (True, "whitelist")
    assert service.cache.is_approved("c1", "ls -la") is True


def test_critical_command_never_whitelisted() -> None:
    service = CommandPermissionService()

    decision = service.check_permission("c1", "ls; rm -rf /tmp/x")

    assert not decision.allowed
    assert decision.risk.level == "critical"


def test_empty_command_is_invalid() -> None:
    decision = CommandPermissionService().check_permission("c1", "   ")

    assert not decision.allowed
    assert decision.reason == "invalid"


def test_one_shot_approval_is_consumed() -> None:
    service = CommandPermissionService()
    service.approve("c1", "git pull", remember=False)

    first = service.check_permission("c1", "git pull origin main")
    second = service.check_permission("c1", "git pull origin main")

    assert first.allowed and first.reason == "cache"
    assert not second.allowed


def test_remembered_approval_persists_per_conversation() -> None:
    service = CommandPermissionService()
    service.approve("c1", "git pull", remember=True)

    assert service.check_permission("c1", "git pull").allowed
    assert service.check_permission("c1", "git pull upstream dev").allowed
    assert not service.check_permission("c2", "git pull").allowed

    service.clear_conversation("c1")
    assert not service.check_permission("c1", "git pull").allowed


def test_approving_rm_does_not_cover_rm_rf_root() -> None:
    service = CommandPermissionService()
    service.approve("c1", extract_command_signature("rm notes.txt"), remember=True)

    assert service.check_permission("c1", "rm notes.txt").allowed
    assert not service.check_permission("c1", "rm -rf /").allowed


def test_require_permission_raises_with_request() -> None:
    service = CommandPermissionService()

    with pytest.raises(CommandPermissionRequiredError) as excinfo:
        service.require_permission("c1", "npm install left-pad", tool_call_id="call_1", tool_name="run_command")

    request = excinfo.value.request
    assert request.conversation_id == "c1"
    assert request.tool_call_id == "call_1"
    assert request.signature == "npm install"
    assert request.risk == "medium"


def test_policy_extra_safe_commands() -> None:
    service = CommandPermissionService(policy=CommandPolicy().with_safe_commands(["make"]))

    assert service.check_permission("c1", "make").reason == "whitelist"
