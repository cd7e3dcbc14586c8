"""
Polling source watcher.

Used by the dev-server supervisor once automatic restarts have given up:
any change to a source file under the project root (debounced to absorb
bursts of writes) asks for one more restart attempt.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

import pathspec

from config import app_config

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[str]], Awaitable[Optional[bool]]]


def load_gitignore(root: str) -> Optional[pathspec.PathSpec]:
    """PathSpec for the project's .gitignore, or None when there is none."""
    gitignore_path = os.path.join(root, ".gitignore")
    if not os.path.isfile(gitignore_path):
        return None
    try:
        with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
            return pathspec.PathSpec.from_lines("gitwildmatch", f)
    except OSError as e:
        logger.debug(f"Failed to read .gitignore: {e}")
        return None


class SourceWatcher:
    """mtime-polling watcher with an extension allow-list and a directory ignore-list."""

    def __init__(
        self,
        root: str,
        on_change: ChangeCallback,
        extensions: Optional[Iterable[str]] = None,
        ignore_dirs: Optional[Iterable[str]] = None,
        debounce: float = app_config.watch_debounce,
        poll_interval: float = app_config.watch_poll_interval,
    ):
        self.root = os.path.abspath(root)
        self.on_change = on_change
        self.extensions: Set[str] = set(extensions if extensions is not None else app_config.watch_extensions)
        self.ignore_dirs: Set[str] = set(ignore_dirs if ignore_dirs is not None else app_config.watch_ignore_dirs)
        self.debounce = debounce
        self.poll_interval = poll_interval
        self._gitignore = load_gitignore(self.root)
        self._mtimes: Dict[str, float] = {}
        self._pending: Set[str] = set()
        self._last_change = 0.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _is_ignored(self, rel_path: str, name: str, is_dir: bool) -> bool:
        if is_dir:
            if name in self.ignore_dirs:
                return True
        else:
            _, ext = os.path.splitext(name)
            if ext not in self.extensions and name not in self.extensions:
                return True
        if self._gitignore:
            check_path = rel_path + "/" if is_dir else rel_path
            if self._gitignore.match_file(check_path):
                return True
        return False

    def scan(self) -> Dict[str, float]:
        """Current mtimes of every watched file, keyed by path relative to the root."""
        mtimes: Dict[str, float] = {}
        for dirpath, dirs, files in os.walk(self.root):
            rel_dir = os.path.relpath(dirpath, self.root)
            rel_dir = "" if rel_dir == "." else rel_dir
            dirs[:] = [
                d for d in dirs
                if not self._is_ignored(os.path.join(rel_dir, d), d, True)
            ]
            for fname in files:
                rel = os.path.join(rel_dir, fname)
                if self._is_ignored(rel, fname, False):
                    continue
                try:
                    mtimes[rel] = os.path.getmtime(os.path.join(dirpath, fname))
                except OSError:
                    pass
        return mtimes

    def _diff(self, current: Dict[str, float]) -> List[str]:
        changed = [p for p, m in current.items() if self._mtimes.get(p) != m]
        changed.extend(p for p in self._mtimes if p not in current)
        self._mtimes = current
        return changed

    def start(self) -> None:
        if self.running:
            return
        self._mtimes = self.scan()
        self._pending.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Watching %s for source changes (%d files)", self.root, len(self._mtimes))

    def stop(self) -> None:
        task = self._task
        self._task = None
        self._pending.clear()
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                current = await asyncio.to_thread(self.scan)
            except OSError as e:
                logger.warning(f"Source scan failed: {e}")
                continue
            changed = self._diff(current)
            if changed:
                self._pending.update(changed)
                self._last_change = loop.time()
                logger.debug("Detected changes: %s", ", ".join(sorted(changed)[:10]))
                continue
            if self._pending and loop.time() - self._last_change >= self.debounce:
                paths = sorted(self._pending)
                result = await self.on_change(paths)
                if self._task is None:
                    # stop() was called from inside the callback
                    return
                if result is not False:
                    self._pending.clear()
