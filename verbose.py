"""
Verbose event tracing.

When enabled, every agent event is written as a one-line trace to the
``sidecar.events`` logger so the terminal shows what the agent is doing.
"""

import logging
from typing import Optional

logger = logging.getLogger("sidecar.events")

_verbose = False

_MAX_DETAIL = 200


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def _truncate(text: str, limit: int = _MAX_DETAIL) -> str:
    one_line = text.replace("\n", "\\n")
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "…"


def log_event(event_type: str, detail: Optional[str] = None) -> None:
    """Trace an event. No-op unless verbose mode is on."""
    if not _verbose:
        return
    if detail:
        logger.info("%-14s %s", event_type, _truncate(detail))
    else:
        logger.info("%s", event_type)
