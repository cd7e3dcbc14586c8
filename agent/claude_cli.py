"""
Claude CLI provider.

Drives the ``claude`` binary in print mode with ``--output-format stream-json``.
The binary runs its own tools and keeps its own conversation, so only the
newest user turn is sent; follow-up turns resume the binary's session id.
"""

import asyncio
import json
import logging
import shutil
import signal
import time
from typing import Any, Dict, List, Optional

from agent.prompts import build_system_prompt, content_text
from agent.providers import ProviderError, ProviderOptions, StreamProvider
from backend import kill_process_group
from config import PROVIDERS

logger = logging.getLogger(__name__)

ALLOWED_TOOLS = ["Read", "Write", "Edit", "Bash", "Glob", "LS", "Grep"]
MAX_TURNS = 25


class ClaudeCliProvider(StreamProvider):
    """Stateful-external provider backed by the Claude CLI."""

    def __init__(self, model_id: str, provider_id: str, binary: Optional[str] = None):
        super().__init__(model_id, provider_id)
        self.binary = binary or PROVIDERS["claude-cli"]["binary"]
        # The CLI's own session id, learned from its init/result messages
        self.session_id: Optional[str] = None

    def build_command(self, prompt: str, options: ProviderOptions) -> List[str]:
        cmd = [
            self.binary, "-p", prompt,
            "--output-format", "stream-json", "--verbose",
            "--model", self.model_id,
            "--max-turns", str(MAX_TURNS),
            "--allowedTools", ",".join(ALLOWED_TOOLS),
            "--append-system-prompt",
            build_system_prompt(options.project_cwd, options.target_port, options.creation_mode),
        ]
        # Creation mode skips confirmations, so let the CLI run everything
        cmd += ["--permission-mode", "bypassPermissions" if options.creation_mode else "acceptEdits"]
        if self.session_id:
            cmd += ["--resume", self.session_id]
        return cmd

    def _handle_message(self, sink: Any, msg: Dict[str, Any], state: Dict[str, Any]) -> None:
        msg_type = msg.get("type")
        if msg.get("session_id"):
            self.session_id = msg["session_id"]

        if msg_type == "assistant":
            for block in msg.get("message", {}).get("content", []):
                if block.get("type") == "text" and block.get("text"):
                    state["text"].append(block["text"])
                    sink.emit("text", block["text"], {"model": self.model_id})
                elif block.get("type") == "tool_use":
                    sink.emit("tool_use", "", {
                        "tool": block.get("name", ""), "input": block.get("input", {}), "id": block.get("id", ""),
                    })
        elif msg_type == "user":
            for block in msg.get("message", {}).get("content", []):
                if isinstance(block, dict) and block.get("type") == "tool_result":
                    content = block.get("content")
                    if isinstance(content, list):
                        content = "\n".join(c.get("text", "") for c in content if isinstance(c, dict))
                    sink.emit("tool_result", "", {
                        "tool_use_id": block.get("tool_use_id", ""),
                        "content": content or "",
                        "is_error": bool(block.get("is_error")),
                    })
        elif msg_type == "result":
            state["result"] = msg

    async def stream_response(self, sink: Any, messages: List[Dict[str, Any]],
                              options: ProviderOptions) -> List[Dict[str, Any]]:
        if not messages:
            return []
        if shutil.which(self.binary) is None:
            message = f"`{self.binary}` binary not found on PATH"
            sink.emit("error", "", {"message": message})
            raise ProviderError(message)

        prompt = content_text(messages[-1]["content"])
        start = time.time()
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(prompt, options),
            cwd=options.project_cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        logger.info("claude CLI started (pid=%s, model=%s, resume=%s)", proc.pid, self.model_id, self.session_id)

        async def _kill_on_cancel() -> None:
            await options.cancel.wait()
            kill_process_group(proc, signal.SIGTERM)

        watcher = asyncio.create_task(_kill_on_cancel()) if options.cancel is not None else None
        state: Dict[str, Any] = {"text": [], "result": None}
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    msg = json.loads(line)
                except ValueError:
                    logger.debug("claude CLI: non-JSON line: %s", line[:200])
                    continue
                self._handle_message(sink, msg, state)
            stderr = (await proc.stderr.read()).decode("utf-8", errors="replace")
            returncode = await proc.wait()
        finally:
            if watcher is not None:
                watcher.cancel()
            if proc.returncode is None:
                kill_process_group(proc, signal.SIGKILL)

        if options.cancelled:
            logger.info("claude CLI stream cancelled")
            return []

        result = state["result"]
        if returncode != 0 and result is None:
            message = stderr.strip() or f"claude exited with code {returncode}"
            sink.emit("error", "", {"message": message})
            raise ProviderError(message)

        result = result or {}
        usage = result.get("usage") or {}
        sink.emit("result", "", {
            "subtype": result.get("subtype", "success"),
            "duration_ms": result.get("duration_ms", int((time.time() - start) * 1000)),
            "num_turns": result.get("num_turns", 1),
            "result": "completed",
            "is_error": bool(result.get("is_error")),
            "input_tokens": usage.get("input_tokens"),
            "output_tokens": usage.get("output_tokens"),
        })

        text = "".join(state["text"]) or result.get("result") or ""
        if not text:
            return []
        return [{"role": "assistant", "content": text}]
