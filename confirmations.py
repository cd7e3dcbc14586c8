"""
Tool confirmation gate.

Risky tool calls (shell commands, file writes) register a pending
confirmation and wait until the user approves or rejects it from the
dashboard. An unanswered confirmation times out as a rejection.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0

AUTO_APPROVE_CATEGORIES = ("bash", "file_writes")


@dataclass
class PendingConfirmation:
    future: "asyncio.Future[bool]"
    timer: asyncio.TimerHandle
    deadline: float


class ConfirmationGate:
    """Correlation table of pending approve/reject requests keyed by confirm id."""

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout
        self._pending: Dict[str, PendingConfirmation] = {}
        self._auto_approve: Dict[str, bool] = {c: False for c in AUTO_APPROVE_CATEGORIES}

    # ------------------------------------------------------------------
    # Auto-approve flags
    # ------------------------------------------------------------------

    def set_auto_approve(self, category: str, value: bool) -> None:
        if category not in self._auto_approve:
            raise ValueError(f"Unknown auto-approve category: {category!r}")
        self._auto_approve[category] = value

    def is_auto_approved(self, category: str) -> bool:
        return self._auto_approve.get(category, False)

    def reset_auto_approve(self) -> None:
        for category in self._auto_approve:
            self._auto_approve[category] = False

    # ------------------------------------------------------------------
    # Pending confirmations
    # ------------------------------------------------------------------

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    async def request(self, confirm_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for a decision. Resolves False on timeout."""
        if timeout is None:
            timeout = self.default_timeout
        loop = asyncio.get_running_loop()

        previous = self._pending.pop(confirm_id, None)
        if previous is not None:
            previous.timer.cancel()
            if not previous.future.done():
                previous.future.set_result(False)

        future: "asyncio.Future[bool]" = loop.create_future()
        timer = loop.call_later(max(timeout, 0), self._expire, confirm_id, future)
        entry = PendingConfirmation(future=future, timer=timer, deadline=loop.time() + timeout)
        self._pending[confirm_id] = entry
        try:
            return await future
        finally:
            # Cancelled waiters must not leave a live entry behind
            if self._pending.get(confirm_id) is entry:
                del self._pending[confirm_id]
                timer.cancel()

    def _expire(self, confirm_id: str, future: "asyncio.Future[bool]") -> None:
        entry = self._pending.get(confirm_id)
        if entry is not None and entry.future is future:
            del self._pending[confirm_id]
        if not future.done():
            logger.info("Confirmation %s timed out", confirm_id)
            future.set_result(False)

    def resolve(self, confirm_id: str, approved: bool) -> bool:
        """Resolve a pending confirmation. Returns False if the id is unknown."""
        entry = self._pending.pop(confirm_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(approved)
        return True

    def _resolve_all(self, approved: bool) -> List[str]:
        resolved = []
        for confirm_id in list(self._pending):
            if self.resolve(confirm_id, approved):
                resolved.append(confirm_id)
        return resolved

    def reject_all(self) -> List[str]:
        """Reject every pending confirmation (stream abort)."""
        rejected = self._resolve_all(False)
        if rejected:
            logger.info("Rejected %d pending confirmation(s)", len(rejected))
        return rejected

    def approve_all(self) -> List[str]:
        """Approve every pending confirmation ("Allow All")."""
        return self._resolve_all(True)

    def reset(self) -> None:
        """Drop all pending confirmations and category approvals (session/run reset)."""
        self.reject_all()
        self.reset_auto_approve()
