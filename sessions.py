"""
Conversation session state for Sidecar.

One session is active process-wide. It holds the message history sent to
the LLM and the (model, provider) pairing that produced it. The provider
adapter is cached on the session and swapped when the pairing changes;
history survives the swap unless a stateful-external provider is involved.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config import is_stateful_provider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, str], Any]


@dataclass
class Session:
    """The active conversation."""
    model_id: str
    provider_id: str
    provider: Any = None
    messages: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)


def strip_trailing_user(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop a trailing run of user messages that never got an assistant reply."""
    end = len(messages)
    while end > 0 and messages[end - 1].get("role") == "user":
        end -= 1
    return messages[:end]


class SessionStore:
    """
    Holds the single active Session.

    ``provider_factory(model_id, provider_id)`` builds the adapter used to
    stream responses; it is called only when the pairing changes.
    """

    def __init__(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        is_stateful: Callable[[Optional[str]], bool] = is_stateful_provider,
    ):
        self._provider_factory = provider_factory
        self._is_stateful = is_stateful
        self._session: Optional[Session] = None

    @property
    def current(self) -> Optional[Session]:
        return self._session

    @property
    def messages(self) -> List[Dict[str, Any]]:
        if self._session is None:
            return []
        return list(self._session.messages)

    def get_or_create(self, model_id: str, provider_id: str) -> Session:
        """Return the session for this pairing, swapping the provider if needed."""
        session = self._session
        if session is not None and session.model_id == model_id and session.provider_id == provider_id:
            return session

        provider = self._provider_factory(model_id, provider_id) if self._provider_factory else None

        preserve = (
            session is not None
            and not self._is_stateful(session.provider_id)
            and not self._is_stateful(provider_id)
        )
        if session is not None and not preserve:
            logger.info(
                "Resetting history: switching %s -> %s involves a stateful provider",
                session.provider_id, provider_id,
            )

        self._session = Session(
            model_id=model_id,
            provider_id=provider_id,
            provider=provider,
            messages=session.messages if preserve else [],
        )
        return self._session

    def get_messages(self, content: Any) -> List[Dict[str, Any]]:
        """History (minus orphan user turns) plus the new user message."""
        user_message = {"role": "user", "content": content}
        if self._session is None:
            return [user_message]

        cleaned = strip_trailing_user(self._session.messages)
        if len(cleaned) != len(self._session.messages):
            logger.warning(
                "Dropped %d orphan user message(s) from history",
                len(self._session.messages) - len(cleaned),
            )
            self._session.messages = cleaned
        return list(cleaned) + [user_message]

    def append_user(self, content: Any) -> None:
        if self._session is None:
            return
        self._session.messages.append({"role": "user", "content": content})

    def append_responses(self, messages: List[Dict[str, Any]]) -> None:
        if self._session is None:
            return
        self._session.messages.extend(messages)

    def reset(self) -> None:
        """Forget the session entirely (history clear, comparison run switch)."""
        self._session = None
