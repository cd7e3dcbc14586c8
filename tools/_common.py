"""Shared types for the tools package."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional


@dataclass
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None

    def to_text(self) -> str:
        """Text handed back to the model as the tool_result content."""
        if self.success:
            return self.output or "(no output)"
        if self.output:
            return f"{self.output}\n\nError: {self.error}"
        return f"Error: {self.error}"


@dataclass
class ToolContext:
    """Everything a tool call needs from the running stream."""
    cwd: str
    # EventSink.emit-compatible callable: emit(event_type, content="", data=None)
    emit: Callable[..., Any]
    confirmations: Any = None
    # Per-category confirmation switches; off in creation mode
    confirm_bash: bool = True
    confirm_file_writes: bool = True
    # Optional async hook used by the RestartDevServer tool
    restart_dev_server: Optional[Callable[[], Awaitable[dict]]] = None
