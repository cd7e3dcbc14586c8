"""Tool schema definitions (Bedrock/Anthropic Messages API) and approval categories."""

from typing import Any, Dict, List

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "Read",
        "description": "Read a file from the project. Returns line-numbered content. Use offset/limit for large files.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to the project root)"},
                "offset": {"type": "integer", "description": "1-based line to start reading from"},
                "limit": {"type": "integer", "description": "Number of lines to read"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "Write",
        "description": "Create a new file or completely overwrite an existing one. Requires user approval unless file writes are auto-approved.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to the project root)"},
                "content": {"type": "string", "description": "Full file content"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "Edit",
        "description": "Replace an exact string in a file. old_string must match exactly one location unless replace_all is true. Read the file first.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to the project root)"},
                "old_string": {"type": "string", "description": "Exact text to replace"},
                "new_string": {"type": "string", "description": "Replacement text"},
                "replace_all": {"type": "boolean", "description": "Replace every occurrence"},
            },
            "required": ["path", "old_string", "new_string"],
        },
    },
    {
        "name": "Bash",
        "description": "Run a shell command in the project directory. Requires user approval unless shell commands are auto-approved. Do not start the dev server yourself; use RestartDevServer.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "timeout": {"type": "integer", "description": "Timeout in seconds (default: 30, max: 300)"},
            },
            "required": ["command"],
        },
    },
    {
        "name": "RestartDevServer",
        "description": "Restart the user's dev server, e.g. after changing configuration or installing dependencies.",
        "input_schema": {"type": "object", "properties": {}},
    },
]

# Tool name -> approval category. Tools missing here run without asking.
TOOL_CATEGORIES: Dict[str, str] = {
    "Bash": "bash",
    "Write": "file_writes",
    "Edit": "file_writes",
}
