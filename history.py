"""
Persisted chat event history.

Every event shown in the dashboard is recorded so a reload (or a server
restart) can replay the conversation. Stored as JSON under
``<project>/.sidecar/history.json``; flushes are debounced except for
stream-ending events, which are written immediately.
"""

import asyncio
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from config import app_config

logger = logging.getLogger(__name__)

HISTORY_FILE = "history.json"

# Event types that are not worth replaying
TRANSIENT_EVENTS = {"status", "done"}
# Event types that end a stream and are flushed straight away
FLUSH_NOW_EVENTS = {"result", "error"}


@dataclass
class HistoryEntry:
    id: str
    event_type: str
    data: str
    timestamp: float


class ChatHistory:
    """In-memory event log backed by a JSON file."""

    def __init__(
        self,
        project_cwd: Optional[str] = None,
        limit: int = app_config.history_limit,
        flush_delay: float = 0.5,
    ):
        self.project_cwd = project_cwd
        self.limit = limit
        self.flush_delay = flush_delay
        self._entries: List[HistoryEntry] = []
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    @property
    def path(self) -> Optional[str]:
        if not self.project_cwd:
            return None
        return os.path.join(self.project_cwd, app_config.state_dir_name, HISTORY_FILE)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Load persisted entries. Returns the number loaded."""
        path = self.path
        if not path or not os.path.exists(path):
            return 0
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable history file {path}: {e}")
            return 0
        if not isinstance(raw, list):
            return 0
        loaded = []
        for item in raw[-self.limit:]:
            try:
                loaded.append(HistoryEntry(
                    id=item["id"],
                    event_type=item["event_type"],
                    data=item["data"],
                    timestamp=item.get("timestamp", 0.0),
                ))
            except (KeyError, TypeError):
                continue
        self._entries = loaded
        return len(loaded)

    def add(self, event_type: str, data: str) -> None:
        if event_type in TRANSIENT_EVENTS:
            return

        if event_type == "text" and self._merge_text(data):
            self._schedule_flush()
            return

        self._entries.append(HistoryEntry(
            id=str(uuid.uuid4()),
            event_type=event_type,
            data=data,
            timestamp=time.time(),
        ))
        if len(self._entries) > self.limit:
            del self._entries[: len(self._entries) - self.limit]

        if event_type in FLUSH_NOW_EVENTS:
            self._cancel_flush()
            self.flush()
        else:
            self._schedule_flush()

    def entries(self) -> List[Dict[str, Any]]:
        return [asdict(e) for e in self._entries]

    def clear(self) -> None:
        self._entries = []
        self._cancel_flush()
        path = self.path
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"Failed to remove history file {path}: {e}")

    def flush(self) -> None:
        """Write entries to disk. Failures are logged; history is best-effort."""
        self._flush_handle = None
        path = self.path
        if not path:
            return
        tmp_path = path + ".tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.entries(), f, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError as e:
            logger.warning(f"History flush failed: {e}")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _merge_text(self, data: str) -> bool:
        """Append streamed text onto the previous text entry."""
        if not self._entries or self._entries[-1].event_type != "text":
            return False
        last = self._entries[-1]
        try:
            last_payload = json.loads(last.data)
            new_payload = json.loads(data)
        except ValueError:
            return False
        if not isinstance(last_payload, dict) or not isinstance(new_payload, dict):
            return False
        last_payload["content"] = (last_payload.get("content") or "") + (new_payload.get("content") or "")
        last.data = json.dumps(last_payload, ensure_ascii=False)
        return True

    def _schedule_flush(self) -> None:
        # A pending flush already covers this change; rescheduling would starve it
        if self._flush_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._flush_handle = loop.call_later(self.flush_delay, self.flush)

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
