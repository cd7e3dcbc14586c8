"""
Agent event type and the in-process publish/subscribe bus.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AgentEvent:
    """Event emitted during agent execution"""
    type: str  # text, tool_use, tool_result, confirm, confirm_resolved, result, error, abort, done, ...
    content: str = ""
    data: Optional[Dict[str, Any]] = None

    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"type": self.type}
        if self.content:
            body["content"] = self.content
        if self.data:
            body.update(self.data)
        return body

    def to_json(self) -> str:
        return json.dumps(self.payload(), ensure_ascii=False)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {self.to_json()}\n\n"


# Terminal marker: a subscription yields nothing after it
_END = object()


class Subscription:
    """One listener's view of the bus. Iterate to receive events."""

    def __init__(self, bus: "EventBus"):
        self._bus = bus
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    def _deliver(self, item: Any) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    async def get(self, timeout: Optional[float] = None) -> Optional[AgentEvent]:
        """Next event, or None once the terminal marker arrives."""
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _END:
            self.close()
            return None
        return item

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> AgentEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """Fan-out of agent events to any number of passive listeners."""

    def __init__(self):
        self._subscribers: List[Subscription] = []

    @property
    def listener_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self._subscribers.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass

    def publish(self, event: AgentEvent) -> None:
        for sub in list(self._subscribers):
            sub._deliver(event)

    def end(self) -> None:
        """Tell every attached listener that the stream is over."""
        for sub in list(self._subscribers):
            sub._deliver(_END)
