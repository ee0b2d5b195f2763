"""Tool argument parsing and the pydantic models for built-in tools.

Models stream tool arguments as JSON text, and that text is not always
valid (trailing commas, single quotes, truncated braces). Arguments are
parsed strictly first, then through ``json_repair``; only text that cannot
be repaired into an object is rejected.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from json_repair import repair_json
from pydantic import BaseModel, ConfigDict, Field

from tether.errors import ToolArgumentsError
from tether.log_utils import log_event

logger = logging.getLogger(__name__)


def parse_tool_arguments(raw: str | Dict[str, Any] | None, tool_name: str = "") -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    text = raw.strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = repair_json(text, return_objects=True)
        log_event(
            logger,
            "tool.args.repaired",
            level=logging.DEBUG,
            tool=tool_name,
            ok=isinstance(parsed, dict),
            raw=text[:200],
        )
    if not isinstance(parsed, dict):
        raise ToolArgumentsError(tool_name, text)
    return parsed


class ReadFileArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str = Field(..., min_length=1, description="Path of the file, relative to the workspace")
    line: int | None = Field(None, ge=1, description="First line to read (1-based)")
    limit: int | None = Field(None, ge=1, description="Maximum number of lines to read")


class WriteFileArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str = Field(..., min_length=1, description="Path of the file, relative to the workspace")
    content: str = Field(..., description="Full new content of the file")


class ListFilesArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    directory: str = Field(".", description="Directory to list, relative to the workspace")
    recursive: bool = Field(False, description="Whether to list recursively")


class RunCommandArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    command: str = Field(..., min_length=1, description="Shell command to run inside the workspace")
    timeout: float | None = Field(None, gt=0, description="Timeout in seconds")


class BrowserFetchArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1, description="https URL to fetch")
    max_bytes: int | None = Field(None, gt=0, description="Maximum response bytes to keep")


__all__ = [
    "BrowserFetchArgs",
    "ListFilesArgs",
    "ReadFileArgs",
    "RunCommandArgs",
    "WriteFileArgs",
    "parse_tool_arguments",
]
