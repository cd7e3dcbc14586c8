"""
Comparison mode: the same prompt built by several models, one git branch per run.

Phases move ``initial -> building -> comparing`` and back to ``building``
whenever another run is added. Selecting a run merges its branch into the
branch the comparison started from and removes every run branch; aborting
removes them without merging. State lives in ``.sidecar/comparison.json``
and is the source of truth, so every operation reloads it.

Git calls are synchronous. Running them on the event loop thread is what
keeps two comparison operations from ever touching the working tree at once.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import app_config
from gitrepo import GitError, GitRepo

logger = logging.getLogger(__name__)

COMPARISON_FILE = "comparison.json"
BRANCH_PREFIX = "sidecar"
DEFAULT_BASE_BRANCH = "main"

# Run status values
BUILDING = "building"
SUCCESS = "success"
FAILED = "failed"


class ComparisonError(Exception):
    """A comparison operation was rejected (missing state, cap reached, run building, ...)"""
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _new_run_id() -> Tuple[str, str]:
    run_id = str(uuid.uuid4())
    return run_id, f"{BRANCH_PREFIX}-run-{run_id[:8]}"


@dataclass
class ComparisonRun:
    id: str
    branch_name: str
    model_id: str
    model_label: str
    provider_id: str
    provider_label: str
    status: str
    prompt: str
    created_at: str
    duration: Optional[float] = None
    token_usage: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "branchName": self.branch_name,
            "modelId": self.model_id,
            "modelLabel": self.model_label,
            "providerId": self.provider_id,
            "providerLabel": self.provider_label,
            "status": self.status,
            "prompt": self.prompt,
            "createdAt": self.created_at,
        }
        if self.duration is not None:
            data["duration"] = self.duration
        if self.token_usage is not None:
            data["tokenUsage"] = dict(self.token_usage)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComparisonRun":
        return cls(
            id=data["id"],
            branch_name=data["branchName"],
            model_id=data["modelId"],
            model_label=data.get("modelLabel", data["modelId"]),
            provider_id=data.get("providerId", ""),
            provider_label=data.get("providerLabel", ""),
            status=data.get("status", FAILED),
            prompt=data.get("prompt", ""),
            created_at=data.get("createdAt", ""),
            duration=data.get("duration"),
            token_usage=data.get("tokenUsage"),
        )


@dataclass
class ComparisonState:
    phase: str
    baseline_ref: str
    original_prompt: str
    runs: List[ComparisonRun] = field(default_factory=list)
    active_run_id: Optional[str] = None
    base_branch: str = DEFAULT_BASE_BRANCH

    def find_run(self, run_id: Optional[str]) -> Optional[ComparisonRun]:
        for run in self.runs:
            if run.id == run_id:
                return run
        return None

    @property
    def active_run(self) -> Optional[ComparisonRun]:
        return self.find_run(self.active_run_id)

    @property
    def building_run(self) -> Optional[ComparisonRun]:
        for run in self.runs:
            if run.status == BUILDING:
                return run
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "baselineRef": self.baseline_ref,
            "baseBranch": self.base_branch,
            "originalPrompt": self.original_prompt,
            "runs": [r.to_dict() for r in self.runs],
            "activeRunId": self.active_run_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComparisonState":
        return cls(
            phase=data["phase"],
            baseline_ref=data["baselineRef"],
            original_prompt=data.get("originalPrompt", ""),
            runs=[ComparisonRun.from_dict(r) for r in data.get("runs", [])],
            active_run_id=data.get("activeRunId"),
            base_branch=data.get("baseBranch") or DEFAULT_BASE_BRANCH,
        )


class ComparisonOrchestrator:
    """Drives the comparison workflow for one project."""

    def __init__(
        self,
        project_cwd: str,
        git: Optional[GitRepo] = None,
        sessions: Any = None,
        confirmations: Any = None,
        max_runs: int = app_config.max_comparison_runs,
        undo: Any = None,
    ):
        self.project_cwd = project_cwd
        self.git = git or GitRepo(project_cwd)
        self.sessions = sessions
        self.confirmations = confirmations
        self.undo = undo
        self.max_runs = max_runs

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def path(self) -> str:
        return os.path.join(self.project_cwd, app_config.state_dir_name, COMPARISON_FILE)

    def state(self) -> Optional[ComparisonState]:
        """Current state, or None when not in comparison mode (or the file is unreadable)."""
        path = self.path
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ComparisonState.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable comparison state {path}: {e}")
            return None

    def _write(self, state: ComparisonState) -> None:
        path = self.path
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)

    def _delete_state(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def _require_state(self) -> ComparisonState:
        state = self.state()
        if state is None:
            raise ComparisonError("No comparison state found")
        return state

    def phase(self) -> Optional[str]:
        state = self.state()
        return state.phase if state else None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reset_conversation(self) -> None:
        """Each run branch gets a fresh conversation and fresh approvals."""
        if self.sessions is not None:
            self.sessions.reset()
        if self.confirmations is not None:
            self.confirmations.reset()
        # Undo baselines belong to the branch they were taken on
        if self.undo is not None:
            self.undo.clear()

    def _commit(self, model_id: str) -> None:
        """Commit whatever the active run left in the working tree."""
        try:
            self.git.commit_all(f"Sidecar: {model_id}")
        except GitError as e:
            logger.warning(f"Commit on {model_id} branch failed: {e}")

    def _attempt(self, warnings: List[str], step: str, fn: Callable, *args: Any) -> None:
        """Run one best-effort step; failures are logged and recorded, never raised."""
        try:
            fn(*args)
        except (GitError, OSError) as e:
            logger.warning(f"Comparison step '{step}' failed: {e}")
            warnings.append(f"{step}: {e}")

    def _create_branch(self, branch_name: str) -> None:
        """Create and check out a branch, tolerating a stale one from a crashed run."""
        try:
            self.git.checkout(branch_name, create=True)
            return
        except GitError:
            pass
        try:
            self.git.checkout(branch_name)
            return
        except GitError:
            pass
        try:
            self.git.delete_branch(branch_name)
        except GitError:
            pass
        self.git.checkout(branch_name, create=True)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def init(self, prompt: str, model_id: str, model_label: str,
             provider_id: str, provider_label: str) -> ComparisonState:
        """Start comparison mode: capture the baseline and branch off for the first run."""
        if not prompt:
            raise ComparisonError("prompt is required")
        baseline_ref = self.git.head()
        try:
            base_branch = self.git.current_branch()
        except GitError:
            base_branch = DEFAULT_BASE_BRANCH
        if base_branch == "HEAD":
            base_branch = DEFAULT_BASE_BRANCH

        run_id, branch_name = _new_run_id()
        # No state is written until the branch exists
        self._create_branch(branch_name)

        run = ComparisonRun(
            id=run_id,
            branch_name=branch_name,
            model_id=model_id,
            model_label=model_label or model_id,
            provider_id=provider_id,
            provider_label=provider_label or provider_id,
            status=BUILDING,
            prompt=prompt,
            created_at=_now_iso(),
        )
        state = ComparisonState(
            phase=BUILDING,
            baseline_ref=baseline_ref,
            original_prompt=prompt,
            runs=[run],
            active_run_id=run_id,
            base_branch=base_branch,
        )
        self._write(state)
        self._reset_conversation()
        logger.info("Comparison started on %s (baseline %s, run %s)", base_branch, baseline_ref[:8], branch_name)
        return state

    def create_run(self, model_id: str, model_label: str, provider_id: str,
                   provider_label: str, prompt: Optional[str] = None) -> Tuple[ComparisonState, ComparisonRun]:
        """Add a run built from the same baseline as every other run."""
        state = self._require_state()
        if len(state.runs) >= self.max_runs:
            raise ComparisonError(f"Maximum of {self.max_runs} runs allowed")
        if state.building_run is not None:
            raise ComparisonError("Cannot create new run while another is building")

        active = state.active_run
        if active is not None:
            self._commit(active.model_id)

        run_id, branch_name = _new_run_id()
        while self.git.branch_exists(branch_name):
            run_id, branch_name = _new_run_id()
        self.git.checkout(branch_name, create=True, start_point=state.baseline_ref)

        run = ComparisonRun(
            id=run_id,
            branch_name=branch_name,
            model_id=model_id,
            model_label=model_label or model_id,
            provider_id=provider_id,
            provider_label=provider_label or provider_id,
            status=BUILDING,
            prompt=prompt or state.original_prompt,
            created_at=_now_iso(),
        )
        state.runs.append(run)
        state.active_run_id = run_id
        state.phase = BUILDING
        self._write(state)
        self._reset_conversation()
        logger.info("Comparison run %s added (%s)", branch_name, model_id)
        return state, run

    def switch_run(self, run_id: str) -> ComparisonState:
        state = self._require_state()
        target = state.find_run(run_id)
        if target is None:
            raise ComparisonError("Run not found")
        if target.status == BUILDING:
            raise ComparisonError("Cannot switch to a building run")
        current = state.active_run
        if current is not None and current.status == BUILDING:
            raise ComparisonError("Cannot switch while current run is building")

        if current is not None:
            self._commit(current.model_id)
        self.git.checkout(target.branch_name)

        state.active_run_id = run_id
        self._write(state)
        self._reset_conversation()
        return state

    def mark_complete(self, run_id: str, success: bool, duration: Optional[float] = None,
                      input_tokens: Optional[int] = None, output_tokens: Optional[int] = None) -> ComparisonState:
        state = self._require_state()
        run = state.find_run(run_id)
        if run is None:
            raise ComparisonError("Run not found")

        run.status = SUCCESS if success else FAILED
        if duration is not None:
            run.duration = duration
        if input_tokens is not None or output_tokens is not None:
            run.token_usage = {"input": input_tokens or 0, "output": output_tokens or 0}

        self._commit(run.model_id)
        state.phase = "comparing"
        self._write(state)
        return state

    def select_run(self, run_id: str) -> List[str]:
        """Finalize with ``run_id`` as the winner. Returns the steps that failed.

        Every step is attempted regardless of earlier failures, so the
        repository always leaves comparison mode.
        """
        warnings: List[str] = []
        state = self.state()
        if state is None:
            return warnings

        selected = state.find_run(run_id)
        if selected is None:
            self._attempt(warnings, "remove state", self._delete_state)
            return warnings

        current = state.active_run
        if current is not None:
            self._attempt(warnings, "commit", self.git.commit_all, f"Sidecar: {current.model_id}")
        self._attempt(warnings, "checkout base", self.git.checkout, state.base_branch)

        message = f"Sidecar: Merge {selected.model_id} build"
        try:
            self.git.merge(selected.branch_name, message)
        except GitError as e:
            logger.warning(f"Merge of {selected.branch_name} failed, retrying with theirs strategy: {e}")
            try:
                self.git.merge(selected.branch_name, message, aggressive=True)
            except GitError as err:
                logger.warning(f"Comparison step 'merge' failed: {err}")
                warnings.append(f"merge: {err}")
                # Never leave a half-finished merge behind
                self._attempt([], "merge abort", self.git.run, "merge", "--abort")

        for run in state.runs:
            self._attempt(warnings, f"delete {run.branch_name}", self.git.delete_branch, run.branch_name)
        self._attempt(warnings, "remove state", self._delete_state)
        self._reset_conversation()
        logger.info("Comparison finalized with %s (%s)", selected.branch_name, selected.model_id)
        return warnings

    def delete_run(self, run_id: str) -> ComparisonState:
        state = self._require_state()
        run = state.find_run(run_id)
        if run is None:
            raise ComparisonError("Run not found")
        if len(state.runs) == 1:
            raise ComparisonError("Cannot delete the only run")
        if run.status == BUILDING:
            raise ComparisonError("Cannot delete a building run")

        if state.active_run_id == run_id:
            other = next((r for r in state.runs if r.id != run_id and r.status != BUILDING), None)
            if other is not None:
                self._commit(run.model_id)
                self.git.checkout(other.branch_name)
                state.active_run_id = other.id

        try:
            self.git.delete_branch(run.branch_name)
        except GitError as e:
            logger.warning(f"Could not delete branch {run.branch_name}: {e}")

        state.runs = [r for r in state.runs if r.id != run_id]
        self._write(state)
        return state

    def abort(self) -> List[str]:
        """Leave comparison mode without merging anything. Returns the steps that failed."""
        warnings: List[str] = []
        state = self.state()
        if state is None:
            self._attempt(warnings, "remove state", self._delete_state)
            return warnings

        current = state.active_run
        if current is not None:
            # Committed so the checkout below cannot be blocked by a dirty tree
            self._attempt(warnings, "commit", self.git.commit_all, f"Sidecar: {current.model_id}")
        self._attempt(warnings, "checkout base", self.git.checkout, state.base_branch)
        for run in state.runs:
            self._attempt(warnings, f"delete {run.branch_name}", self.git.delete_branch, run.branch_name)
        self._attempt(warnings, "remove state", self._delete_state)
        self._reset_conversation()
        logger.info("Comparison aborted")
        return warnings

    def resume(self) -> Optional[ComparisonState]:
        """Re-enter comparison mode after a restart, or discard state that no longer matches git."""
        state = self.state()
        if state is None:
            return None

        def _discard(reason: str) -> None:
            logger.warning(f"Discarding comparison state: {reason}")
            try:
                self._delete_state()
            except OSError as e:
                logger.warning(f"Could not remove comparison state: {e}")

        active = state.active_run
        if active is None:
            _discard("active run missing")
            return None
        try:
            if self.git.current_branch() != active.branch_name:
                if not self.git.branch_exists(active.branch_name):
                    _discard(f"branch {active.branch_name} no longer exists")
                    return None
                self.git.checkout(active.branch_name)
        except GitError as e:
            _discard(str(e))
            return None

        logger.info("Resumed comparison (%s phase, %d runs)", state.phase, len(state.runs))
        return state
