"""
Tool definitions and implementations for the coding agent.
Each tool has an Anthropic-compatible schema and an implementation function.
Tools use a Backend abstraction for file/command operations.
"""

from tools._common import ToolContext, ToolResult  # noqa: F401
from tools.approval import REJECTED_MESSAGE, confirm_tool_call  # noqa: F401
from tools.file_ops import read_file, write_file, edit_file  # noqa: F401
from tools.external_ops import run_command  # noqa: F401
from tools.schemas import TOOL_DEFINITIONS, TOOL_CATEGORIES  # noqa: F401
from tools.dispatch import execute_tool, needs_approval  # noqa: F401
