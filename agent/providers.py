"""
Provider adapter contract and resolution.

A provider turns a message list into a stream of agent events written to
an EventSink, and returns the response messages to append to history.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import PROVIDERS, app_config, get_model_by_id

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Provider could not be resolved or failed at runtime"""
    pass


@dataclass
class ProviderOptions:
    """Per-stream settings handed to a provider."""
    project_cwd: str = "."
    target_port: int = app_config.target_port
    # CancelToken; the provider must stop streaming once it fires
    cancel: Any = None
    # Creation mode builds a new app from scratch: tool confirmations are skipped
    creation_mode: bool = False
    # Async hook for the RestartDevServer tool; None when no dev server is supervised
    restart_dev_server: Any = None

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled


class StreamProvider(ABC):
    """Abstract LLM/agent backend."""

    def __init__(self, model_id: str, provider_id: str):
        self.model_id = model_id
        self.provider_id = provider_id

    @abstractmethod
    async def stream_response(self, sink: Any, messages: List[Dict[str, Any]],
                              options: ProviderOptions) -> List[Dict[str, Any]]:
        """Stream one turn. Returns response messages (empty if nothing was produced)."""


def resolve_provider(model_id: str, provider_id: Optional[str], confirmations: Any = None) -> StreamProvider:
    """Build the adapter for a (model, provider) pairing."""
    model = get_model_by_id(model_id)
    if model is not None:
        if provider_id and provider_id != model["provider"]:
            raise ProviderError(
                f"Model {model_id} belongs to provider {model['provider']}, not {provider_id}"
            )
        provider_id = model["provider"]
    elif not provider_id:
        raise ProviderError(f"Unknown model: {model_id}. Use GET /api/models for available models.")

    if provider_id not in PROVIDERS:
        raise ProviderError(f"No provider implementation for: {provider_id}")

    if provider_id == "claude-cli":
        from agent.claude_cli import ClaudeCliProvider
        return ClaudeCliProvider(model_id, provider_id)
    if provider_id == "bedrock":
        from agent.bedrock import BedrockProvider
        return BedrockProvider(model_id, provider_id, confirmations=confirmations)
    raise ProviderError(f"No provider implementation for: {provider_id}")
