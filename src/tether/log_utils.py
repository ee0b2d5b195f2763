"""Logging setup and structured event helpers.

Every component logs through ``log_event`` with a short dotted event name
(``loop.start``, ``tool.call.end``, ``permission.check``) and keyword fields.
Identifiers shared by a whole block of work, such as the conversation or the
loop id, are attached once with ``log_context`` and appear on every record
emitted inside that block.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator

from tether.paths import log_dir

ENV_PREFIX = "TETHER_LOG_"
DEFAULT_LOG_FILE = "tether.log"
DEFAULT_LOG_MAX_BYTES = 5_000_000
DEFAULT_LOG_BACKUPS = 3
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_LOG_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("tether_log_context", default={})


@dataclass(frozen=True)
class LogConfig:
    """Resolved logging settings for the CLI and embedding applications."""

    log_file: Path
    level: int = logging.INFO
    stderr: bool = False
    json: bool = False
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUPS
    logger_levels: Dict[str, int] = field(default_factory=dict)


def parse_level(value: str | None, default: int) -> int:
    if not value:
        return default
    value = value.strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        return int(value)
    return default


def _parse_logger_levels(value: str | None) -> Dict[str, int]:
    """Parse ``name=LEVEL`` pairs separated by commas (e.g. ``httpx=WARNING``)."""
    levels: Dict[str, int] = {}
    for item in (value or "").split(","):
        name, sep, level = item.partition("=")
        if not sep or not name.strip():
            continue
        levels[name.strip()] = parse_level(level, logging.INFO)
    return levels


def build_log_config(*, log_file_name: str = DEFAULT_LOG_FILE, default_level: int = logging.INFO) -> LogConfig:
    """Read ``TETHER_LOG_*`` environment variables into a ``LogConfig``."""

    directory = Path(os.getenv(f"{ENV_PREFIX}DIR") or log_dir())
    directory.mkdir(parents=True, exist_ok=True)
    return LogConfig(
        log_file=directory / log_file_name,
        level=parse_level(os.getenv(f"{ENV_PREFIX}LEVEL"), default_level),
        stderr=parse_bool(os.getenv(f"{ENV_PREFIX}STDERR"), False),
        json=parse_bool(os.getenv(f"{ENV_PREFIX}JSON"), False),
        max_bytes=parse_int(os.getenv(f"{ENV_PREFIX}MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
        backup_count=parse_int(os.getenv(f"{ENV_PREFIX}BACKUPS"), DEFAULT_LOG_BACKUPS),
        logger_levels=_parse_logger_levels(os.getenv(f"{ENV_PREFIX}LEVELS")),
    )


def configure_logging(config: LogConfig) -> None:
    """Install rotating file (and optional stderr) handlers on the root logger.

    Existing root handlers are removed first so repeated calls do not
    duplicate output.
    """

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(config.level)

    formatter: logging.Formatter = JsonFormatter() if config.json else ContextFormatter(TEXT_FORMAT)
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.stderr:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for name, level in config.logger_levels.items():
        logging.getLogger(name).setLevel(level)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach fields to every record logged inside the block (None values skipped)."""

    merged = {**_LOG_CONTEXT.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _LOG_CONTEXT.set(merged)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, exc_info: bool = False, **fields: Any
) -> None:
    """Log a dotted event name with keyword fields."""

    logger.log(level, event, exc_info=exc_info, extra={"event_fields": fields})


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        if value == "" or any(ch.isspace() for ch in value) or "=" in value or '"' in value:
            return json.dumps(value)
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)
    return str(value)


def _format_fields(fields: Dict[str, Any]) -> str:
    return " ".join(f"{key}={_format_value(fields[key])}" for key in sorted(fields) if fields[key] is not None)


class ContextFilter(logging.Filter):
    """Copy the active log context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 - logging API name
        record.context_fields = current_log_context()
        if not hasattr(record, "event_fields"):
            record.event_fields = {}
        return True


class ContextFormatter(logging.Formatter):
    """Plain-text lines with ``key=value`` context and event fields appended."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra = _format_fields({**getattr(record, "context_fields", {}), **getattr(record, "event_fields", {})})
        return f"{base} {extra}" if extra else base


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for jq or log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        context = getattr(record, "context_fields", {})
        fields = getattr(record, "event_fields", {})
        if context:
            payload["context"] = context
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)
