"""
Approval hook for risky tool calls.

Tools in the ``bash`` and ``file_writes`` categories ask the user before
running. The question is surfaced as a ``confirm`` event and answered through
POST /api/confirm, which resolves the pending entry in the ConfirmationGate.
"""

import logging
import uuid
from typing import Optional

from tools._common import ToolContext

logger = logging.getLogger(__name__)

REJECTED_MESSAGE = (
    "Command was rejected by the user. "
    "Try a different approach or ask the user for guidance."
)


def _category_enabled(ctx: ToolContext, category: str) -> bool:
    if category == "bash":
        return ctx.confirm_bash
    if category == "file_writes":
        return ctx.confirm_file_writes
    return True


async def confirm_tool_call(
    ctx: ToolContext,
    category: str,
    tool_name: str,
    summary: str,
    timeout: Optional[float] = None,
) -> bool:
    """Ask the user to approve one tool call. Returns True when it may run.

    Rejection and timeout both return False; the caller turns that into
    REJECTED_MESSAGE for the model.
    """
    gate = ctx.confirmations
    if gate is None or not _category_enabled(ctx, category):
        return True
    if gate.is_auto_approved(category):
        return True

    confirm_id = f"confirm-{uuid.uuid4().hex[:12]}"
    ctx.emit("confirm", "", {
        "confirmId": confirm_id,
        "toolName": tool_name,
        "category": category,
        "summary": summary,
    })
    approved = await gate.request(confirm_id, timeout)
    ctx.emit("confirm_resolved", "", {"confirmId": confirm_id, "approved": approved})
    if not approved:
        logger.info("Tool call %s rejected (%s)", tool_name, confirm_id)
    return approved
