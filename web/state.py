"""
Shared service objects for the web server.

Every process-wide service lives here, built once by init_services().
Route modules read them as ``web.state.<name>`` at request time.
"""

import logging
import os
from typing import Optional

from agent.events import EventBus
from agent.providers import ProviderOptions, resolve_provider
from agent.stream import CancelToken, StreamSupervisor
from comparison import ComparisonOrchestrator
from config import app_config
from confirmations import ConfirmationGate
from devserver import DevServerSupervisor
from history import ChatHistory
from project import is_project_fresh
from sessions import SessionStore
from undo import UndoTracker

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

project_cwd: str = os.path.abspath(".")
target_port: int = app_config.target_port
manage_dev_server: bool = True

confirmations: Optional[ConfirmationGate] = None
sessions: Optional[SessionStore] = None
bus: Optional[EventBus] = None
history: Optional[ChatHistory] = None
stream: Optional[StreamSupervisor] = None
devserver: Optional[DevServerSupervisor] = None
comparison: Optional[ComparisonOrchestrator] = None
undo: Optional[UndoTracker] = None


def _options_factory(token: CancelToken) -> ProviderOptions:
    return ProviderOptions(
        project_cwd=project_cwd,
        target_port=target_port,
        cancel=token,
        restart_dev_server=devserver.restart if (devserver is not None and manage_dev_server) else None,
    )


def _is_creation_mode() -> bool:
    return is_project_fresh(project_cwd)


def _is_agent_busy() -> bool:
    return stream is not None and stream.active


def init_services(cwd: str, port: int, dev_command: Optional[str] = None,
                  dev_server: bool = True) -> None:
    """Build every service for one project. Called once at startup (and by tests)."""
    global project_cwd, target_port, manage_dev_server
    global confirmations, sessions, bus, history, stream, devserver, comparison, undo

    project_cwd = os.path.abspath(cwd)
    target_port = port
    manage_dev_server = dev_server

    confirmations = ConfirmationGate(default_timeout=app_config.confirm_timeout)
    sessions = SessionStore(
        provider_factory=lambda model_id, provider_id: resolve_provider(model_id, provider_id, confirmations),
    )
    bus = EventBus()
    history = ChatHistory(project_cwd)
    undo = UndoTracker(project_cwd)
    stream = StreamSupervisor(
        sessions,
        bus,
        confirmations,
        history=history,
        options_factory=_options_factory,
        is_creation_mode=_is_creation_mode,
        undo=undo,
    )
    devserver = DevServerSupervisor(command=dev_command or app_config.dev_command, is_busy=_is_agent_busy)
    comparison = ComparisonOrchestrator(project_cwd, sessions=sessions, confirmations=confirmations, undo=undo)
    logger.info("Services ready for %s (target port %d)", project_cwd, target_port)
