"""Conversation to resumption-token bookkeeping."""

from clibridge.session.store import InMemorySessionStore, SessionStore

__all__ = ["InMemorySessionStore", "SessionStore"]
