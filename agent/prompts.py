"""
Prompt composition: system prompts and the context blocks prepended to a user prompt.
"""

import re
from typing import Any, Dict, List, Optional, Union

from tools import TOOL_DEFINITIONS


AVAILABLE_TOOL_NAMES = ", ".join(t["name"] for t in TOOL_DEFINITIONS)

_DATA_URL_RE = re.compile(r"^data:(?P<media>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


# ============================================================
# System prompts
# ============================================================

_MOD_IDENTITY = """You are a coding agent embedded in the developer's running web application. \
The user is looking at the app in a browser while you edit its source on their machine. \
Keep changes focused and explain what you changed in one or two sentences when you finish."""

_MOD_TOOLS = f"""You can call these tools: {AVAILABLE_TOOL_NAMES}.
- Read files before editing them. Prefer Edit for small changes and Write for new files.
- Shell commands and file writes may need the user's approval. If a call is rejected, \
do not retry it unchanged; try a different approach or ask the user.
- The dev server is supervised for you. Never start it with Bash; use RestartDevServer when needed."""

_MOD_CREATION = """The project is being created from scratch. Scaffold a working app that matches \
the user's description, then make sure the dev server can serve it."""


def build_system_prompt(project_cwd: str, target_port: int, creation_mode: bool = False) -> str:
    """Assemble the system prompt for one stream."""
    parts = [
        _MOD_IDENTITY,
        f"Project directory: {project_cwd}\nThe app is served at http://localhost:{target_port}",
        _MOD_TOOLS,
    ]
    if creation_mode:
        parts.append(_MOD_CREATION)
    return "\n\n".join(parts)


# ============================================================
# Context blocks
# ============================================================

def format_console_context(entries: List[Dict[str, Any]]) -> Optional[str]:
    """Browser console entries as a prompt block, or None when there are none."""
    if not entries:
        return None

    parts = []
    for entry in entries:
        lines = [f"[{entry.get('level', 'error')}] {entry.get('message', '')}"]
        trace = entry.get("sourceTrace") or []
        if trace:
            lines.append("Trace:")
            for frame in trace:
                line = frame.get("line")
                lines.append(f"  {frame.get('source', '')}{f':{line}' if line else ''}")
        elif entry.get("source"):
            loc = entry["source"]
            if entry.get("line"):
                loc += f":{entry['line']}"
            if entry.get("column"):
                loc += f":{entry['column']}"
            lines.append(f"Source: {loc}")
        if entry.get("stack"):
            lines.append(f"Stack: {entry['stack']}")
        if (entry.get("count") or 1) > 1:
            lines.append(f"Occurred {entry['count']} times")
        parts.append("\n".join(lines))

    return "[Browser Console Errors]\n\n" + "\n\n".join(parts) + "\n\n"


def format_page_context(ctx: Dict[str, Any]) -> str:
    lines = ["[Page Context]", f"URL: {ctx.get('url', '')}"]
    if ctx.get("title"):
        lines.append(f"Title: {ctx['title']}")
    if ctx.get("routeComponent"):
        lines.append(f"Route component: {ctx['routeComponent']}")
    return "\n".join(lines) + "\n\n"


def _image_block(data_url: str) -> Optional[Dict[str, Any]]:
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        return None
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": match.group("media"), "data": match.group("data")},
    }


def build_user_content(
    prompt: str,
    console_entries: Optional[List[Dict[str, Any]]] = None,
    page_context: Optional[Dict[str, Any]] = None,
    images: Optional[List[str]] = None,
) -> Union[str, List[Dict[str, Any]]]:
    """User message content: context blocks prepended, multipart when images are attached.

    Console errors come first, then page context, then the prompt itself.
    """
    augmented = prompt
    if page_context:
        augmented = format_page_context(page_context) + augmented
    console_block = format_console_context(console_entries or [])
    if console_block:
        augmented = console_block + augmented

    blocks = [b for b in (_image_block(url) for url in images or []) if b]
    if not blocks:
        return augmented
    return [{"type": "text", "text": augmented}] + blocks


def content_text(content: Union[str, List[Dict[str, Any]]]) -> str:
    """Plain text of a message content value (image blocks dropped)."""
    if isinstance(content, str):
        return content
    return "\n".join(b.get("text", "") for b in content if b.get("type") == "text")
