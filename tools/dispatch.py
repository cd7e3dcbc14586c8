"""Tool execution dispatch and approval logic."""

import asyncio
import logging
from typing import Any, Dict, Optional

from backend import LocalBackend
from tools._common import ToolContext, ToolResult
from tools.approval import REJECTED_MESSAGE, confirm_tool_call
from tools.external_ops import format_restart_result, run_command
from tools.file_ops import edit_file, read_file, write_file
from tools.schemas import TOOL_CATEGORIES

logger = logging.getLogger(__name__)

_MAX_COMMAND_TIMEOUT = 300


def needs_approval(tool_name: str) -> Optional[str]:
    """Approval category for a tool, or None when it runs unasked."""
    return TOOL_CATEGORIES.get(tool_name)


def _summarize(tool_name: str, inputs: Dict[str, Any]) -> str:
    if tool_name == "Bash":
        return str(inputs.get("command", ""))
    return str(inputs.get("path", ""))


def _run_sync(tool_name: str, inputs: Dict[str, Any], backend: LocalBackend) -> ToolResult:
    if tool_name == "Read":
        return read_file(inputs.get("path", ""), inputs.get("offset"), inputs.get("limit"), backend=backend)
    if tool_name == "Write":
        return write_file(inputs.get("path", ""), inputs.get("content", ""), backend=backend)
    if tool_name == "Edit":
        return edit_file(
            inputs.get("path", ""), inputs.get("old_string", ""), inputs.get("new_string", ""),
            backend=backend, replace_all=bool(inputs.get("replace_all", False)),
        )
    if tool_name == "Bash":
        timeout = min(int(inputs.get("timeout") or 30), _MAX_COMMAND_TIMEOUT)
        return run_command(inputs.get("command", ""), timeout=timeout, backend=backend)
    return ToolResult(success=False, output="", error=f"Unknown tool: {tool_name}")


async def execute_tool(tool_name: str, inputs: Dict[str, Any], ctx: ToolContext) -> ToolResult:
    """Run one tool call, asking for approval first when its category requires it."""
    category = needs_approval(tool_name)
    if category is not None:
        approved = await confirm_tool_call(ctx, category, tool_name, _summarize(tool_name, inputs))
        if not approved:
            return ToolResult(success=False, output="", error=REJECTED_MESSAGE)

    if tool_name == "RestartDevServer":
        if ctx.restart_dev_server is None:
            return ToolResult(success=False, output="", error="Dev server is not managed by this process")
        return format_restart_result(await ctx.restart_dev_server())

    backend = LocalBackend(ctx.cwd)
    # Blocking file and process work runs off the event loop
    return await asyncio.to_thread(_run_sync, tool_name, inputs, backend)
