"""Tests for the agent tools and the approval hook."""

import asyncio

import pytest

from backend import LocalBackend
from confirmations import ConfirmationGate
from tools import (
    REJECTED_MESSAGE, ToolContext, ToolResult,
    edit_file, execute_tool, needs_approval, read_file, run_command, write_file,
)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event_type, content="", data=None):
        self.events.append((event_type, content, data))
        return True

    def of_type(self, event_type):
        return [data for t, _, data in self.events if t == event_type]


# =============================================================================
# File and shell tools
# =============================================================================


class TestFileOps:

    def test_read_file_numbers_lines(self, tmp_path):
        (tmp_path / "a.txt").write_text("one\ntwo\nthree\n")
        result = read_file("a.txt", backend=LocalBackend(str(tmp_path)))
        assert result.success
        assert result.output.splitlines()[0] == "[3 lines total]"
        assert "     2|two" in result.output

    def test_read_file_window(self, tmp_path):
        (tmp_path / "a.txt").write_text("\n".join(str(i) for i in range(1, 11)))
        result = read_file("a.txt", offset=4, limit=2, backend=LocalBackend(str(tmp_path)))
        assert "(showing lines 4-5)" in result.output
        assert "     4|4" in result.output
        assert "     6|6" not in result.output

    def test_read_missing_file(self, tmp_path):
        result = read_file("nope.txt", backend=LocalBackend(str(tmp_path)))
        assert not result.success
        assert "File not found" in result.error

    def test_path_outside_project_is_refused(self, tmp_path):
        result = read_file("../secret.txt", backend=LocalBackend(str(tmp_path)))
        assert not result.success
        assert "escapes" in result.error

    def test_write_creates_parents(self, tmp_path):
        result = write_file("src/new.js", "let x = 1;\n", backend=LocalBackend(str(tmp_path)))
        assert result.success
        assert result.output.startswith("Created 1 lines to src/new.js")
        assert (tmp_path / "src" / "new.js").read_text() == "let x = 1;\n"

    def test_edit_requires_unique_match(self, tmp_path):
        (tmp_path / "a.js").write_text("x = 1\nx = 1\n")
        backend = LocalBackend(str(tmp_path))

        ambiguous = edit_file("a.js", "x = 1", "x = 2", backend=backend)
        assert not ambiguous.success
        assert "2 occurrences" in ambiguous.error

        result = edit_file("a.js", "x = 1", "x = 2", backend=backend, replace_all=True)
        assert result.success
        assert (tmp_path / "a.js").read_text() == "x = 2\nx = 2\n"

    def test_edit_missing_string(self, tmp_path):
        (tmp_path / "a.js").write_text("hello\n")
        result = edit_file("a.js", "bye", "hi", backend=LocalBackend(str(tmp_path)))
        assert not result.success
        assert "not found" in result.error


class TestRunCommand:

    def test_success(self, tmp_path):
        result = run_command("echo hello", backend=LocalBackend(str(tmp_path)))
        assert result.success
        assert result.output.strip() == "hello"

    def test_failure_reports_exit_code(self, tmp_path):
        result = run_command("echo oops >&2; exit 3", backend=LocalBackend(str(tmp_path)))
        assert not result.success
        assert result.output.startswith("[exit code: 3]")
        assert "[stderr]\noops" in result.output

    def test_empty_command(self, tmp_path):
        assert not run_command("  ", backend=LocalBackend(str(tmp_path))).success


def test_tool_result_text():
    assert ToolResult(True, "").to_text() == "(no output)"
    assert ToolResult(False, "", "bad").to_text() == "Error: bad"


def test_approval_categories():
    assert needs_approval("Bash") == "bash"
    assert needs_approval("Write") == "file_writes"
    assert needs_approval("Edit") == "file_writes"
    assert needs_approval("Read") is None


# =============================================================================
# Dispatch with confirmations
# =============================================================================


class TestExecuteTool:

    async def test_safe_tool_runs_without_asking(self, tmp_path):
        (tmp_path / "a.txt").write_text("hi\n")
        emit = Recorder()
        ctx = ToolContext(cwd=str(tmp_path), emit=emit, confirmations=ConfirmationGate())

        result = await execute_tool("Read", {"path": "a.txt"}, ctx)
        assert result.success
        assert emit.events == []

    async def test_approved_write_runs(self, tmp_path, until):
        gate = ConfirmationGate(default_timeout=5)
        emit = Recorder()
        ctx = ToolContext(cwd=str(tmp_path), emit=emit, confirmations=gate)

        task = asyncio.create_task(execute_tool("Write", {"path": "b.txt", "content": "B"}, ctx))
        await until(lambda: emit.of_type("confirm"))
        confirm = emit.of_type("confirm")[0]
        assert confirm["toolName"] == "Write"
        assert confirm["category"] == "file_writes"
        assert confirm["summary"] == "b.txt"

        gate.resolve(confirm["confirmId"], True)
        result = await task

        assert result.success
        assert (tmp_path / "b.txt").read_text() == "B"
        assert emit.of_type("confirm_resolved") == [{"confirmId": confirm["confirmId"], "approved": True}]

    async def test_rejected_command_returns_rejection_message(self, tmp_path, until):
        gate = ConfirmationGate(default_timeout=5)
        emit = Recorder()
        ctx = ToolContext(cwd=str(tmp_path), emit=emit, confirmations=gate)

        task = asyncio.create_task(execute_tool("Bash", {"command": "touch made"}, ctx))
        await until(lambda: gate.pending_ids)
        gate.reject_all()
        result = await task

        assert not result.success
        assert result.error == REJECTED_MESSAGE
        assert not (tmp_path / "made").exists()

    async def test_timeout_counts_as_rejection(self, tmp_path):
        ctx = ToolContext(cwd=str(tmp_path), emit=Recorder(), confirmations=ConfirmationGate(default_timeout=0.01))
        result = await execute_tool("Bash", {"command": "true"}, ctx)
        assert result.error == REJECTED_MESSAGE

    async def test_auto_approved_category_skips_confirmation(self, tmp_path):
        gate = ConfirmationGate()
        gate.set_auto_approve("bash", True)
        emit = Recorder()
        ctx = ToolContext(cwd=str(tmp_path), emit=emit, confirmations=gate)

        result = await execute_tool("Bash", {"command": "echo ok"}, ctx)
        assert result.success
        assert emit.of_type("confirm") == []

    async def test_disabled_confirmation_skips_gate(self, tmp_path):
        emit = Recorder()
        ctx = ToolContext(
            cwd=str(tmp_path), emit=emit, confirmations=ConfirmationGate(),
            confirm_bash=False, confirm_file_writes=False,
        )
        result = await execute_tool("Write", {"path": "c.txt", "content": "C"}, ctx)
        assert result.success
        assert emit.events == []

    async def test_restart_tool_without_dev_server(self, tmp_path):
        ctx = ToolContext(cwd=str(tmp_path), emit=Recorder())
        result = await execute_tool("RestartDevServer", {}, ctx)
        assert not result.success

    async def test_restart_tool_calls_hook(self, tmp_path):
        async def restart():
            return {"success": True, "message": "Dev server restarted successfully."}

        ctx = ToolContext(cwd=str(tmp_path), emit=Recorder(), restart_dev_server=restart)
        result = await execute_tool("RestartDevServer", {}, ctx)
        assert result.success
        assert result.output == "Dev server restarted successfully."

    async def test_unknown_tool(self, tmp_path):
        ctx = ToolContext(cwd=str(tmp_path), emit=Recorder())
        result = await execute_tool("Teleport", {}, ctx)
        assert not result.success
        assert "Unknown tool" in result.error
