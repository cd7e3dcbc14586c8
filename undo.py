"""
Session-based undo.

Each agent stream is one undo group. When the stream starts, the working
tree is snapshotted with ``git stash create`` (HEAD when the tree is clean)
together with the set of untracked files. When it ends, every file that
differs from the snapshot, plus every file that appeared since, is recorded
and the group is pushed on a stack. Undo pops the newest group and puts its
files back exactly as they were at the start of that stream.

Projects that are not git repositories simply get no undo groups.
"""

import logging
import os
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from gitrepo import GitError, GitRepo

logger = logging.getLogger(__name__)


@dataclass
class UndoGroup:
    id: str
    baseline: str
    untracked_at_start: Set[str]
    changed_files: List[str] = field(default_factory=list)


def count_line_stats(original: str, current: str) -> Dict[str, int]:
    """+/- line counts, matching lines as a bag rather than by position."""
    old_lines = original.split("\n")
    new_lines = current.split("\n")
    remaining = Counter(old_lines)
    matched = 0
    for line in new_lines:
        if remaining[line] > 0:
            remaining[line] -= 1
            matched += 1
    return {"additions": len(new_lines) - matched, "deletions": len(old_lines) - matched}


def _decode(data: Optional[bytes]) -> str:
    if data is None:
        return ""
    return data.decode("utf-8", errors="replace")


class UndoTracker:
    """Undo groups for one project, newest last."""

    def __init__(self, project_cwd: str, git: Optional[GitRepo] = None):
        self.project_cwd = os.path.abspath(project_cwd)
        self.git = git or GitRepo(self.project_cwd)
        self._stack: List[UndoGroup] = []

    # ------------------------------------------------------------------
    # Group lifecycle
    # ------------------------------------------------------------------

    def start_group(self) -> Optional[UndoGroup]:
        """Snapshot the working tree. Returns None outside a git repository."""
        if not self.git.is_repo():
            return None
        try:
            baseline = self.git.stash_create() or self.git.head()
            untracked = set(self.git.untracked_files())
        except GitError as e:
            logger.warning(f"Undo snapshot failed: {e}")
            return None
        group_id = f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        logger.debug("Undo group %s starts at %s", group_id, baseline[:8])
        return UndoGroup(id=group_id, baseline=baseline, untracked_at_start=untracked)

    def end_group(self, group: Optional[UndoGroup]) -> bool:
        """Record what the stream changed. Groups that changed nothing are dropped."""
        if group is None:
            return False
        changed = self.changed_files(group)
        if not changed:
            return False
        group.changed_files = changed
        self._stack.append(group)
        logger.info("Undo group %s recorded (%d files)", group.id, len(changed))
        return True

    def changed_files(self, group: UndoGroup) -> List[str]:
        try:
            tracked = self.git.changed_files(group.baseline)
        except GitError as e:
            logger.warning(f"Undo diff failed: {e}")
            tracked = []
        try:
            created = [p for p in self.git.untracked_files() if p not in group.untracked_at_start]
        except GitError as e:
            logger.warning(f"Listing untracked files failed: {e}")
            created = []
        return list(dict.fromkeys(tracked + created))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current_text(self, rel_path: str) -> Optional[str]:
        full_path = os.path.join(self.project_cwd, rel_path)
        if not os.path.isfile(full_path):
            return None
        with open(full_path, "rb") as f:
            return _decode(f.read())

    def file_stats(self, group: Optional[UndoGroup]) -> List[Dict[str, Any]]:
        """Per-file line stats for a group that is still open."""
        if group is None:
            return []
        stats = []
        for rel_path in self.changed_files(group):
            try:
                original = self.git.show_file(group.baseline, rel_path)
                current = self._current_text(rel_path)
            except (GitError, OSError) as e:
                logger.warning(f"Skipping stats for {rel_path}: {e}")
                continue
            counts = count_line_stats(_decode(original), current or "")
            stats.append({
                "relativePath": rel_path,
                "additions": counts["additions"],
                "deletions": counts["deletions"],
                "isNew": original is None and current is not None,
            })
        return stats

    def latest_diffs(self) -> Optional[List[Dict[str, Any]]]:
        """Baseline vs. current content for every file in the newest group."""
        if not self._stack:
            return None
        group = self._stack[-1]
        diffs = []
        for rel_path in group.changed_files:
            original = self.git.show_file(group.baseline, rel_path)
            current = self._current_text(rel_path)
            diffs.append({
                "relativePath": rel_path,
                "originalContent": _decode(original),
                "currentContent": current or "",
                "existed": original is not None,
                "existsNow": current is not None,
            })
        return diffs or None

    def stack(self) -> List[Dict[str, Any]]:
        return [
            {"sessionId": g.id, "files": [{"file": f} for f in g.changed_files]}
            for g in self._stack
        ]

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def undo(self) -> List[str]:
        """Restore the newest group's files. Returns the paths put back (empty if none)."""
        if not self._stack:
            return []
        group = self._stack.pop()
        restored = []
        for rel_path in group.changed_files:
            full_path = os.path.join(self.project_cwd, rel_path)
            try:
                original = self.git.show_file(group.baseline, rel_path)
                if original is None:
                    # Created during the stream
                    if os.path.exists(full_path):
                        os.remove(full_path)
                else:
                    os.makedirs(os.path.dirname(full_path), exist_ok=True)
                    with open(full_path, "wb") as f:
                        f.write(original)
                restored.append(rel_path)
            except (GitError, OSError) as e:
                logger.error(f"Failed to restore {rel_path}: {e}")
        logger.info("Undid group %s (%d files)", group.id, len(restored))
        return restored

    def clear(self) -> None:
        self._stack = []
