"""Engine configuration loaded from ``TETHER_*`` environment variables.

A ``.env`` file in the user config directory is loaded first (without
overriding variables already set in the process environment).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv

from tether.log_utils import log_event, parse_bool, parse_int
from tether.paths import config_dir, data_dir
from tether.permissions.policy import CommandPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "TETHER_"
ENV_FILE_NAME = ".env"

DEFAULT_OFFLOAD_THRESHOLD = 3000
DEFAULT_OFFLOAD_PREVIEW_CHARS = 1024
DEFAULT_MAX_TOOL_CALLS = 200
DEFAULT_MAX_READ_SIZE = 10 * 1024 * 1024
DEFAULT_STREAM_QUEUE_SIZE = 64
DEFAULT_CONTEXT_TOKEN_BUDGET = 0


@dataclass(frozen=True)
class EngineConfig:
    """Tunable policy for the loop engine.

    ``context_token_budget`` of 0 disables history compression.
    """

    data_root: Path | None = None
    offload_threshold: int = DEFAULT_OFFLOAD_THRESHOLD
    offload_preview_chars: int = DEFAULT_OFFLOAD_PREVIEW_CHARS
    max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS
    max_read_size: int = DEFAULT_MAX_READ_SIZE
    stream_queue_size: int = DEFAULT_STREAM_QUEUE_SIZE
    context_token_budget: int = DEFAULT_CONTEXT_TOKEN_BUDGET
    supports_function_call: bool = True
    command_policy: CommandPolicy = field(default_factory=CommandPolicy)

    def resolved_data_root(self) -> Path:
        return self.data_root or data_dir()


def _split_csv(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def load_engine_config(env_file: Path | None = None, **overrides: object) -> EngineConfig:
    """Build an ``EngineConfig`` from the environment, then apply keyword overrides."""

    env_path = env_file or config_dir() / ENV_FILE_NAME
    if env_path.exists():
        load_dotenv(env_path, override=False)

    data_root = os.getenv(f"{ENV_PREFIX}DATA_DIR")
    policy = CommandPolicy()
    extra_safe = _split_csv(os.getenv(f"{ENV_PREFIX}SAFE_COMMANDS"))
    if extra_safe:
        policy = policy.with_safe_commands(extra_safe)

    config = EngineConfig(
        data_root=Path(data_root).expanduser() if data_root else None,
        offload_threshold=parse_int(os.getenv(f"{ENV_PREFIX}OFFLOAD_THRESHOLD"), DEFAULT_OFFLOAD_THRESHOLD),
        offload_preview_chars=parse_int(os.getenv(f"{ENV_PREFIX}OFFLOAD_PREVIEW"), DEFAULT_OFFLOAD_PREVIEW_CHARS),
        max_tool_calls=parse_int(os.getenv(f"{ENV_PREFIX}MAX_TOOL_CALLS"), DEFAULT_MAX_TOOL_CALLS),
        max_read_size=parse_int(os.getenv(f"{ENV_PREFIX}MAX_READ_SIZE"), DEFAULT_MAX_READ_SIZE),
        stream_queue_size=parse_int(os.getenv(f"{ENV_PREFIX}STREAM_QUEUE_SIZE"), DEFAULT_STREAM_QUEUE_SIZE),
        context_token_budget=parse_int(os.getenv(f"{ENV_PREFIX}CONTEXT_TOKENS"), DEFAULT_CONTEXT_TOKEN_BUDGET),
        supports_function_call=parse_bool(os.getenv(f"{ENV_PREFIX}FUNCTION_CALLING"), True),
        command_policy=policy,
    )
    if overrides:
        config = replace(config, **overrides)  # type: ignore[arg-type]
    log_event(
        logger,
        "config.loaded",
        level=logging.DEBUG,
        offload_threshold=config.offload_threshold,
        max_tool_calls=config.max_tool_calls,
        function_calling=config.supports_function_call,
    )
    return config
