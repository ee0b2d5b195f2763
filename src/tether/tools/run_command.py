"""Shell command execution for the agent workspace tools."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict

from tether.log_utils import log_event

logger = logging.getLogger(__name__)

RUN_COMMAND_TIMEOUT_S = 60.0


def _format_output(stdout: str, stderr: str, returncode: int | None) -> str:
    parts = [stdout] if stdout else []
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    parts.append(f"[exit code: {returncode}]")
    return "\n".join(parts)


async def run_command(command: str, cwd: Path | str | None = None, timeout: float | None = None) -> Dict[str, Any]:
    """Execute a shell command and capture its output.

    Returns ``content`` (stdout, stderr and exit code as text), ``error``
    (set only when the command could not run to completion) and
    ``returncode``.
    """

    limit = timeout or RUN_COMMAND_TIMEOUT_S
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as exc:
        return {"content": "", "error": str(exc), "returncode": -1}

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.communicate()
        log_event(logger, "tool.run_command.timeout", level=logging.WARNING, command=command, timeout=limit)
        return {"content": "", "error": f"Command timed out after {limit}s", "returncode": -1}
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        raise

    stdout_text = stdout.decode(errors="replace").rstrip("\n") if stdout else ""
    stderr_text = stderr.decode(errors="replace").rstrip("\n") if stderr else ""
    log_event(logger, "tool.run_command.exit", level=logging.DEBUG, command=command, returncode=proc.returncode)
    return {
        "content": _format_output(stdout_text, stderr_text, proc.returncode),
        "error": None,
        "returncode": proc.returncode,
        "stdout": stdout_text,
        "stderr": stderr_text,
    }


__all__ = ["RUN_COMMAND_TIMEOUT_S", "run_command"]
