"""Session store: maps a host conversation to the agent's resumption token."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Minimal get/set contract the provider needs."""

    def get(self, conversation_id: str) -> str | None:
        """Return the token recorded for *conversation_id*, if any."""
        ...

    def set(self, conversation_id: str, token: str) -> None:
        """Record *token* for *conversation_id*, replacing any previous one."""
        ...


class InMemorySessionStore:
    """Process-lifetime store. Last writer wins; entries are never evicted."""

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}

    def get(self, conversation_id: str) -> str | None:
        return self._tokens.get(conversation_id)

    def set(self, conversation_id: str, token: str) -> None:
        previous = self._tokens.get(conversation_id)
        self._tokens[conversation_id] = token
        if previous is not None and previous != token:
            logger.debug(
                "conversation %s: resumption token replaced", conversation_id,
            )

    def __len__(self) -> int:
        return len(self._tokens)
