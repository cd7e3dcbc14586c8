"""
Agent package - streaming agent runtime.

This package contains the agent-facing side of the control plane:
- events: AgentEvent and the in-process event bus
- stream: single-flight StreamSupervisor and the cancellable EventSink
- providers: provider contract and resolution from the model catalog
- bedrock: Claude on Amazon Bedrock with a local tool loop
- claude_cli: the Claude CLI binary (keeps its own conversation)
- prompts: system prompt and context-block formatting
"""

from .events import AgentEvent, EventBus, Subscription
from .providers import ProviderError, ProviderOptions, StreamProvider, resolve_provider
from .stream import CancelToken, EventSink, StreamSupervisor

__all__ = [
    "AgentEvent",
    "EventBus",
    "Subscription",
    "ProviderError",
    "ProviderOptions",
    "StreamProvider",
    "resolve_provider",
    "CancelToken",
    "EventSink",
    "StreamSupervisor",
]
