"""File operation tools: read, write, edit."""

import difflib
import logging
from typing import Any, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult

logger = logging.getLogger(__name__)

_MAX_FULL_READ_LINES = 500


def _require_path(path: str, name: str = "path") -> Optional[ToolResult]:
    """Return an error ToolResult if path is empty/whitespace; else None."""
    if not (path or "").strip():
        return ToolResult(success=False, output="", error=f"{name} is required")
    return None


def read_file(path: str, offset: Optional[int] = None, limit: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Read the contents of a file. Returns line-numbered content."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        if not b.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")

        lines = b.read_file(path).splitlines()
        total_lines = len(lines)

        if offset is not None or limit is not None:
            start = max((offset or 1) - 1, 0)
            end = start + (limit or total_lines)
            selected = lines[start:end]
            numbered = [f"{start + i + 1:6}|{line}" for i, line in enumerate(selected)]
            header = f"[{total_lines} lines total] (showing lines {start + 1}-{start + len(selected)})"
            return ToolResult(success=True, output=header + "\n" + "\n".join(numbered))

        if total_lines > _MAX_FULL_READ_LINES:
            numbered = [f"{i + 1:6}|{line}" for i, line in enumerate(lines[:_MAX_FULL_READ_LINES])]
            return ToolResult(success=True, output=(
                f"[{total_lines} lines total, showing first {_MAX_FULL_READ_LINES}; use offset/limit for more]\n"
                + "\n".join(numbered)
            ))

        numbered = [f"{i + 1:6}|{line}" for i, line in enumerate(lines)]
        return ToolResult(success=True, output=f"[{total_lines} lines total]\n" + "\n".join(numbered))
    except (OSError, ValueError) as e:
        return ToolResult(success=False, output="", error=str(e))


def _compact_diff(old_content: str, new_content: str, path: str, max_lines: int = 60) -> str:
    """Compact unified diff for the tool_result event."""
    diff = list(difflib.unified_diff(
        old_content.splitlines(), new_content.splitlines(),
        fromfile=path, tofile=path, lineterm="",
    ))
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(diff)


def write_file(path: str, content: str,
               backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Create a new file or completely overwrite an existing file."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        is_new = not b.file_exists(path)
        old_content = "" if is_new else b.read_file(path)
        b.write_file(path, content)
        line_count = len(content.splitlines())
        summary = f"{'Created' if is_new else 'Wrote'} {line_count} lines to {path}"
        diff_text = _compact_diff(old_content, content, path)
        return ToolResult(success=True, output=f"{summary}\n{diff_text}" if diff_text else summary)
    except (OSError, ValueError) as e:
        return ToolResult(success=False, output="", error=str(e))


def edit_file(path: str, old_string: str, new_string: str,
              backend: Optional[Backend] = None, working_directory: str = ".",
              replace_all: bool = False, **kw: Any) -> ToolResult:
    """Replace an exact string in a file. By default must match exactly one location."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        if not b.file_exists(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        content = b.read_file(path)
        count = content.count(old_string) if old_string else 0
        if count == 0:
            return ToolResult(success=False, output="",
                error=f"old_string not found in {path}. Re-read the file and match it exactly, including whitespace.")
        if count > 1 and not replace_all:
            return ToolResult(success=False, output="",
                error=f"Found {count} occurrences of old_string in {path}. Add surrounding context or set replace_all=true.")
        new_content = content.replace(old_string, new_string) if replace_all else content.replace(old_string, new_string, 1)
        b.write_file(path, new_content)
        replaced = count if replace_all else 1
        summary = f"Applied edit to {path}" + (f" ({replaced} replacements)" if replaced > 1 else "")
        diff_text = _compact_diff(content, new_content, path)
        return ToolResult(success=True, output=f"{summary}\n{diff_text}" if diff_text else summary)
    except (OSError, ValueError) as e:
        return ToolResult(success=False, output="", error=str(e))
