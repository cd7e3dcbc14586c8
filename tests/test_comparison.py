"""Tests for the comparison workflow against a real git repository."""

import json

import pytest

import comparison
from comparison import ComparisonError, ComparisonOrchestrator
from confirmations import ConfirmationGate
from gitrepo import GitError
from sessions import SessionStore


@pytest.fixture
def sessions():
    return SessionStore(is_stateful=lambda p: False)


@pytest.fixture
def gate():
    return ConfirmationGate()


@pytest.fixture
def orchestrator(git_project, sessions, gate):
    return ComparisonOrchestrator(str(git_project), sessions=sessions, confirmations=gate, max_runs=5)


def _start(orchestrator, prompt="Add dark mode"):
    return orchestrator.init(prompt, "sonnet", "Claude Sonnet", "claude-cli", "Claude CLI")


def _add(orchestrator, model_id="opus"):
    return orchestrator.create_run(model_id, model_id.title(), "claude-cli", "Claude CLI")


def _branches(git):
    return [b.strip("* ").strip() for b in git("branch", "--list").splitlines()]


# =============================================================================
# init / create
# =============================================================================


class TestInit:

    def test_init_starts_first_run(self, orchestrator, git_project, git):
        state = _start(orchestrator)

        assert state.phase == "building"
        assert len(state.runs) == 1
        run = state.runs[0]
        assert run.status == "building"
        assert state.active_run_id == run.id
        assert state.base_branch == "main"
        assert run.branch_name.startswith("sidecar-run-")
        assert git("rev-parse", "--abbrev-ref", "HEAD") == run.branch_name

        saved = json.loads((git_project / ".sidecar" / "comparison.json").read_text())
        assert saved["phase"] == "building"
        assert saved["runs"][0]["modelId"] == "sonnet"

    def test_init_requires_prompt(self, orchestrator, git_project):
        with pytest.raises(ComparisonError):
            _start(orchestrator, prompt="")
        assert orchestrator.state() is None
        assert not (git_project / ".sidecar" / "comparison.json").exists()

    def test_init_resets_conversation(self, orchestrator, sessions, gate):
        sessions.get_or_create("sonnet", "claude-cli")
        gate.set_auto_approve("bash", True)

        _start(orchestrator)
        assert sessions.current is None
        assert not gate.is_auto_approved("bash")

    def test_full_scenario_shares_baseline(self, orchestrator, git_project, git):
        baseline = git("rev-parse", "HEAD")
        state = _start(orchestrator)
        first = state.runs[0]
        (git_project / "dark.css").write_text("body { background: #000; }\n")

        state = orchestrator.mark_complete(first.id, True, duration=1200)
        assert state.phase == "comparing"
        assert state.runs[0].status == "success"
        assert state.runs[0].duration == 1200

        state, second = _add(orchestrator)
        assert state.phase == "building"
        assert len(state.runs) == 2
        assert state.active_run_id == second.id
        assert state.baseline_ref == baseline
        assert git("rev-parse", "HEAD") == baseline
        assert not (git_project / "dark.css").exists()

    def test_create_while_building_is_rejected(self, orchestrator):
        _start(orchestrator)
        with pytest.raises(ComparisonError):
            _add(orchestrator)
        assert len(orchestrator.state().runs) == 1

    def test_run_cap(self, git_project, sessions, gate):
        orchestrator = ComparisonOrchestrator(str(git_project), sessions=sessions, confirmations=gate, max_runs=2)
        state = _start(orchestrator)
        orchestrator.mark_complete(state.runs[0].id, True)
        _, second = _add(orchestrator)
        orchestrator.mark_complete(second.id, False)

        with pytest.raises(ComparisonError):
            _add(orchestrator, "haiku")
        assert len(orchestrator.state().runs) == 2

    def test_create_without_state(self, orchestrator):
        with pytest.raises(ComparisonError):
            _add(orchestrator)

    def test_new_run_inherits_original_prompt(self, orchestrator):
        state = _start(orchestrator)
        orchestrator.mark_complete(state.runs[0].id, True)
        _, run = _add(orchestrator)
        assert run.prompt == "Add dark mode"

    def test_init_reuses_stale_branch(self, orchestrator, git, monkeypatch):
        git("branch", "sidecar-run-stale000")
        monkeypatch.setattr(comparison, "_new_run_id", lambda: ("stale-id", "sidecar-run-stale000"))

        state = _start(orchestrator)

        assert state.runs[0].branch_name == "sidecar-run-stale000"
        assert git("rev-parse", "--abbrev-ref", "HEAD") == "sidecar-run-stale000"

    def test_init_recreates_stale_branch_it_cannot_check_out(self, orchestrator, git_project, git, monkeypatch):
        baseline = git("rev-parse", "HEAD")
        git("checkout", "-b", "sidecar-run-stale000")
        (git_project / "index.js").write_text("console.log('stale');\n")
        git("commit", "-am", "stale run")
        git("checkout", "main")
        # Uncommitted edits that the stale branch would overwrite
        (git_project / "index.js").write_text("console.log('local');\n")
        monkeypatch.setattr(comparison, "_new_run_id", lambda: ("stale-id", "sidecar-run-stale000"))

        _start(orchestrator)

        assert git("rev-parse", "--abbrev-ref", "HEAD") == "sidecar-run-stale000"
        assert git("rev-parse", "HEAD") == baseline
        assert (git_project / "index.js").read_text() == "console.log('local');\n"

    def test_create_run_skips_taken_branch_names(self, orchestrator, git, monkeypatch):
        ids = iter([
            ("run-a", "sidecar-run-aaaaaaaa"),
            ("run-b", "sidecar-run-aaaaaaaa"),
            ("run-c", "sidecar-run-cccccccc"),
        ])
        monkeypatch.setattr(comparison, "_new_run_id", lambda: next(ids))
        state = _start(orchestrator)
        orchestrator.mark_complete(state.runs[0].id, True)

        _, run = _add(orchestrator)

        assert run.id == "run-c"
        assert run.branch_name == "sidecar-run-cccccccc"
        assert git("rev-parse", "--abbrev-ref", "HEAD") == "sidecar-run-cccccccc"


# =============================================================================
# complete / switch / delete
# =============================================================================


class TestRunManagement:

    def _two_finished_runs(self, orchestrator, git_project):
        state = _start(orchestrator)
        first = state.runs[0]
        (git_project / "first.txt").write_text("first\n")
        orchestrator.mark_complete(first.id, True)
        _, second = _add(orchestrator)
        (git_project / "second.txt").write_text("second\n")
        orchestrator.mark_complete(second.id, True, input_tokens=10, output_tokens=20)
        return first, second

    def test_mark_complete_records_usage_and_commits(self, orchestrator, git_project, git):
        first, second = self._two_finished_runs(orchestrator, git_project)
        run = orchestrator.state().find_run(second.id)
        assert run.token_usage == {"input": 10, "output": 20}
        assert git("status", "--porcelain", "--", ".", ":(exclude).sidecar") == ""

    def test_mark_complete_unknown_run(self, orchestrator):
        _start(orchestrator)
        with pytest.raises(ComparisonError):
            orchestrator.mark_complete("missing", True)

    def test_switch_checks_out_run_branch(self, orchestrator, git_project, git):
        first, second = self._two_finished_runs(orchestrator, git_project)

        state = orchestrator.switch_run(first.id)

        assert state.active_run_id == first.id
        assert git("rev-parse", "--abbrev-ref", "HEAD") == first.branch_name
        assert (git_project / "first.txt").exists()
        assert not (git_project / "second.txt").exists()

    def test_switch_rejected_while_building(self, orchestrator):
        state = _start(orchestrator)
        first = state.runs[0]
        orchestrator.mark_complete(first.id, True)
        _, second = _add(orchestrator)

        with pytest.raises(ComparisonError):
            orchestrator.switch_run(first.id)
        with pytest.raises(ComparisonError):
            orchestrator.switch_run(second.id)

    def test_delete_only_run_rejected(self, orchestrator):
        state = _start(orchestrator)
        orchestrator.mark_complete(state.runs[0].id, True)
        with pytest.raises(ComparisonError):
            orchestrator.delete_run(state.runs[0].id)

    def test_delete_building_run_rejected(self, orchestrator):
        state = _start(orchestrator)
        orchestrator.mark_complete(state.runs[0].id, True)
        _, second = _add(orchestrator)
        with pytest.raises(ComparisonError):
            orchestrator.delete_run(second.id)

    def test_delete_active_run_switches_to_other(self, orchestrator, git_project, git):
        first, second = self._two_finished_runs(orchestrator, git_project)

        state = orchestrator.delete_run(second.id)

        assert [r.id for r in state.runs] == [first.id]
        assert state.active_run_id == first.id
        assert git("rev-parse", "--abbrev-ref", "HEAD") == first.branch_name
        assert second.branch_name not in _branches(git)


# =============================================================================
# select / abort / resume
# =============================================================================


class TestFinalize:

    def test_select_merges_winner_and_cleans_up(self, orchestrator, git_project, git, sessions):
        first, second = self._runs(orchestrator, git_project)
        sessions.get_or_create("opus", "claude-cli")

        warnings = orchestrator.select_run(first.id)

        assert warnings == []
        assert git("rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert (git_project / "first.txt").exists()
        assert not (git_project / "second.txt").exists()
        assert _branches(git) == ["main"]
        assert orchestrator.state() is None
        assert sessions.current is None

    def test_select_survives_failed_merge(self, orchestrator, git_project, git, monkeypatch):
        first, _ = self._runs(orchestrator, git_project)

        def broken_merge(branch, message, aggressive=False):
            raise GitError(["merge", branch], 1, "CONFLICT")

        monkeypatch.setattr(orchestrator.git, "merge", broken_merge)
        warnings = orchestrator.select_run(first.id)

        assert any(w.startswith("merge") for w in warnings)
        assert orchestrator.state() is None
        assert _branches(git) == ["main"]

    def test_select_unknown_run_still_leaves_comparison(self, orchestrator, git_project):
        self._runs(orchestrator, git_project)
        orchestrator.select_run("missing")
        assert orchestrator.state() is None

    def test_abort_discards_everything(self, orchestrator, git_project, git):
        self._runs(orchestrator, git_project)

        warnings = orchestrator.abort()

        assert warnings == []
        assert git("rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert _branches(git) == ["main"]
        assert not (git_project / "first.txt").exists()
        assert orchestrator.state() is None

    def test_abort_without_state(self, orchestrator):
        assert orchestrator.abort() == []

    def test_resume_checks_out_active_branch(self, orchestrator, git_project, git):
        first, _ = self._runs(orchestrator, git_project)
        orchestrator.switch_run(first.id)
        git("checkout", "main")

        state = orchestrator.resume()

        assert state is not None
        assert git("rev-parse", "--abbrev-ref", "HEAD") == first.branch_name

    def test_resume_discards_state_with_missing_branch(self, orchestrator, git_project, git):
        first, second = self._runs(orchestrator, git_project)
        git("checkout", "main")
        git("branch", "-D", second.branch_name)

        assert orchestrator.resume() is None
        assert orchestrator.state() is None

    def test_unreadable_state_is_ignored(self, orchestrator, git_project):
        (git_project / ".sidecar").mkdir()
        (git_project / ".sidecar" / "comparison.json").write_text("{broken")
        assert orchestrator.state() is None
        assert orchestrator.phase() is None

    def _runs(self, orchestrator, git_project):
        state = _start(orchestrator)
        first = state.runs[0]
        (git_project / "first.txt").write_text("first\n")
        orchestrator.mark_complete(first.id, True)
        _, second = _add(orchestrator)
        (git_project / "second.txt").write_text("second\n")
        orchestrator.mark_complete(second.id, True)
        return first, second
