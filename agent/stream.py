"""
Single-flight stream supervisor.

Exactly one agent stream is live at a time. A new chat request cancels the
previous one; events emitted under a cancelled token are dropped. Responses
are committed to the session only when the provider produced at least one
message, so an aborted turn never leaves an orphan user message behind.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from agent.events import AgentEvent, EventBus
from agent.providers import ProviderOptions
from confirmations import ConfirmationGate
from history import ChatHistory
from sessions import SessionStore
from undo import UndoTracker
from verbose import log_event

logger = logging.getLogger(__name__)

HEARTBEAT_SECS = 15


class CancelToken:
    """Cancellation signal handed to a provider for one stream."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class EventSink:
    """What a provider writes to. Drops everything once its token is cancelled."""

    def __init__(self, bus: EventBus, token: CancelToken, history: Optional[ChatHistory] = None):
        self._bus = bus
        self._token = token
        self._history = history
        # Set while an undo group is open; adds file_stats to the result event
        self.file_stats: Optional[Callable[[], List[Dict[str, Any]]]] = None

    @property
    def token(self) -> CancelToken:
        return self._token

    def emit(self, event_type: str, content: str = "", data: Optional[Dict[str, Any]] = None) -> bool:
        """Publish an event. Returns False if it was dropped as stale."""
        if self._token.cancelled:
            return False
        if event_type == "result" and self.file_stats is not None:
            stats = self.file_stats()
            if stats:
                data = dict(data or {}, file_stats=stats)
        event = AgentEvent(type=event_type, content=content, data=data)
        self._bus.publish(event)
        if self._history is not None:
            self._history.add(event_type, event.to_json())
        log_event(event_type, content or (event.to_json() if data else None))
        return True


class StreamSupervisor:
    """Accepts one chat request at a time and fans its events out to listeners."""

    def __init__(
        self,
        sessions: SessionStore,
        bus: EventBus,
        confirmations: ConfirmationGate,
        history: Optional[ChatHistory] = None,
        options_factory: Optional[Callable[[CancelToken], ProviderOptions]] = None,
        is_creation_mode: Optional[Callable[[], bool]] = None,
        undo: Optional[UndoTracker] = None,
    ):
        self.sessions = sessions
        self.bus = bus
        self.confirmations = confirmations
        self.history = history
        self.undo = undo
        self._options_factory = options_factory
        self._is_creation_mode = is_creation_mode
        self._token: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def status(self) -> Dict[str, bool]:
        return {"active": self.active}

    def _build_options(self, token: CancelToken) -> ProviderOptions:
        if self._options_factory is not None:
            options = self._options_factory(token)
        else:
            options = ProviderOptions(cancel=token)
        if self._is_creation_mode is not None:
            options.creation_mode = bool(self._is_creation_mode())
        return options

    async def start(self, content: Any, model_id: str, provider_id: str) -> asyncio.Task:
        """Start a new stream, superseding any active one."""
        self._cancel_active()

        token = CancelToken()
        self._token = token

        try:
            session = self.sessions.get_or_create(model_id, provider_id)
            messages = self.sessions.get_messages(content)
        except Exception:
            if self._token is token:
                self._token = None
            raise

        sink = EventSink(self.bus, token, self.history)
        options = self._build_options(token)
        logger.info("Stream started (model=%s, provider=%s, %d messages)", model_id, provider_id, len(messages))
        task = asyncio.create_task(self._run(session.provider, sink, messages, options, content, token))
        self._task = task
        return task

    async def _run(
        self,
        provider: Any,
        sink: EventSink,
        messages: List[Dict[str, Any]],
        options: ProviderOptions,
        content: Any,
        token: CancelToken,
    ) -> None:
        group = None
        if self.undo is not None:
            group = await asyncio.to_thread(self.undo.start_group)
            if group is not None:
                sink.file_stats = lambda: self.undo.file_stats(group)
        try:
            responses = await provider.stream_response(sink, messages, options)
            if responses:
                self.sessions.append_user(content)
                self.sessions.append_responses(responses)
        except Exception as e:
            # Already surfaced to listeners as an error event by the provider
            logger.error("stream_response rejected: %s", e)
        finally:
            if group is not None:
                sink.file_stats = None
                await asyncio.to_thread(self.undo.end_group, group)
            if self._token is token:
                self._token = None
            if not token.cancelled:
                self.bus.end()

    def _cancel_active(self) -> bool:
        token = self._token
        self._token = None
        if token is None or token.cancelled:
            return False
        token.cancel()
        self.confirmations.reject_all()
        return True

    def abort(self) -> bool:
        """Cancel the active stream, if any. Safe to call repeatedly."""
        cancelled = self._cancel_active()
        if cancelled:
            logger.info("Stream aborted")
            self.bus.end()
        return cancelled

    async def wait(self) -> None:
        """Wait for the most recent stream task to settle (used on shutdown and in tests)."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def stream_events(self, reconnect: bool = False) -> AsyncIterator[str]:
        """SSE frames for one listener, from the moment it attaches.

        A listener that attaches when no stream is active (first connect
        after a fast stream, or a reconnect after it ended) gets an
        immediate ``done`` so it never waits on a finished stream.
        """
        if not self.active:
            if reconnect:
                logger.debug("Reconnecting listener found no active stream")
            yield AgentEvent(type="done").to_sse()
            return

        sub = self.bus.subscribe()
        try:
            while True:
                try:
                    event = await sub.get(timeout=HEARTBEAT_SECS)
                except asyncio.TimeoutError:
                    yield ": ping\n\n"
                    continue
                if event is None:
                    yield AgentEvent(type="done").to_sse()
                    return
                yield event.to_sse()
        finally:
            sub.close()
