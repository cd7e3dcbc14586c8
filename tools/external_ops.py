"""Shell command tool and the dev-server restart tool."""

import logging
from typing import Any, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult

logger = logging.getLogger(__name__)

_MAX_OUTPUT_CHARS = 20000


def _truncate_output(output: str) -> str:
    if len(output) <= _MAX_OUTPUT_CHARS:
        return output
    lines_out = output.split("\n")
    if len(lines_out) > 200:
        return ("\n".join(lines_out[:100])
                + f"\n\n... [{len(lines_out) - 150} lines truncated] ...\n\n"
                + "\n".join(lines_out[-50:]))
    return output[:10000] + "\n\n... [truncated] ...\n\n" + output[-5000:]


def run_command(command: str, timeout: int = 30,
                backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Execute a shell command in the project directory."""
    if not (command or "").strip():
        return ToolResult(success=False, output="", error="command is required")
    try:
        b = backend or LocalBackend(working_directory)
        stdout, stderr, rc = b.run_command(command, cwd=".", timeout=timeout)
    except OSError as e:
        return ToolResult(success=False, output="", error=str(e))

    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    if rc != 0:
        output = f"[exit code: {rc}]\n{output}"

    return ToolResult(
        success=rc == 0, output=_truncate_output(output),
        error=None if rc == 0 else f"Command exited with code {rc}",
    )


def format_restart_result(result: dict) -> ToolResult:
    """Turn a DevServerSupervisor.restart() reply into a tool result."""
    if result.get("success"):
        return ToolResult(success=True, output=result.get("message") or "Dev server restarted.")
    return ToolResult(success=False, output="", error=result.get("message") or "Restart failed")
