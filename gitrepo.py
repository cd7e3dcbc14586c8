"""
Thin synchronous wrapper around the git CLI for one working tree.

The project's ``.sidecar/`` state directory is never staged or reported
as a change, so comparison bookkeeping does not leak into run branches.
"""

import logging
import subprocess
from typing import List, Optional

from config import app_config

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60


class GitError(Exception):
    """A git command exited non-zero."""

    def __init__(self, args: List[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {self.stderr}")


class GitRepo:
    """git commands run in ``cwd``."""

    def __init__(self, cwd: str):
        self.cwd = cwd
        self._exclude = f":(exclude){app_config.state_dir_name}"

    def run(self, *args: str) -> str:
        """Run ``git <args>`` and return stripped stdout. Raises GitError on failure."""
        cmd = ["git", *args]
        try:
            proc = subprocess.run(
                cmd, cwd=self.cwd, capture_output=True, text=True, timeout=GIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitError(list(args), -1, str(e))
        if proc.returncode != 0:
            raise GitError(list(args), proc.returncode, proc.stderr or proc.stdout)
        logger.debug("git %s", " ".join(args))
        return proc.stdout.strip()

    def head(self) -> str:
        return self.run("rev-parse", "HEAD")

    def current_branch(self) -> str:
        return self.run("rev-parse", "--abbrev-ref", "HEAD")

    def branch_exists(self, name: str) -> bool:
        try:
            self.run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}")
            return True
        except GitError:
            return False

    def has_uncommitted_changes(self) -> bool:
        try:
            return bool(self.run("status", "--porcelain", "--", ".", self._exclude))
        except GitError:
            return False

    def commit_all(self, message: str) -> bool:
        """Stage and commit everything. Returns False when there was nothing to commit."""
        if not self.has_uncommitted_changes():
            return False
        self.run("add", "-A", "--", ".", self._exclude)
        self.run("commit", "-m", message, "--allow-empty")
        return True

    def checkout(self, name: str, create: bool = False, start_point: Optional[str] = None) -> None:
        args = ["checkout"]
        if create:
            args.append("-b")
        args.append(name)
        if start_point:
            args.append(start_point)
        self.run(*args)

    def delete_branch(self, name: str) -> None:
        self.run("branch", "-D", name)

    def merge(self, branch: str, message: str, aggressive: bool = False) -> None:
        """Merge ``branch`` preferring its side on conflicts."""
        if aggressive:
            self.run("merge", branch, "--strategy-option=theirs", "-m", message, "--allow-unrelated-histories")
        else:
            self.run("merge", branch, "-X", "theirs", "-m", message)

    # ------------------------------------------------------------------
    # Working-tree snapshots
    # ------------------------------------------------------------------

    def is_repo(self) -> bool:
        try:
            self.run("rev-parse", "--git-dir")
            return True
        except GitError:
            return False

    def stash_create(self) -> str:
        """Commit object for the current working tree; empty when the tree is clean.

        Nothing is stashed; the working tree and the stash list are untouched.
        """
        return self.run("stash", "create")

    def untracked_files(self) -> List[str]:
        out = self.run("ls-files", "-z", "--others", "--exclude-standard", "--", ".", self._exclude)
        return [p for p in out.split("\0") if p]

    def changed_files(self, ref: str) -> List[str]:
        """Tracked paths (relative to ``cwd``) that differ between ``ref`` and the working tree."""
        out = self.run("diff", "-z", "--name-only", "--relative", ref, "--", ".", self._exclude)
        return [p for p in out.split("\0") if p]

    def show_file(self, ref: str, path: str) -> Optional[bytes]:
        """Raw contents of ``path`` at ``ref``, or None if it did not exist there."""
        args = ["show", f"{ref}:./{path}"]
        try:
            proc = subprocess.run(["git", *args], cwd=self.cwd, capture_output=True, timeout=GIT_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitError(args, -1, str(e))
        if proc.returncode != 0:
            return None
        return proc.stdout
