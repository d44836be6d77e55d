"""Tests for the conversation to resumption-token store."""

from __future__ import annotations

from clibridge.session.store import InMemorySessionStore, SessionStore


class TestInMemorySessionStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemorySessionStore(), SessionStore)

    def test_unknown_conversation(self) -> None:
        assert InMemorySessionStore().get("nope") is None

    def test_set_and_get(self) -> None:
        store = InMemorySessionStore()
        store.set("c1", "s1")
        assert store.get("c1") == "s1"
        assert len(store) == 1

    def test_last_writer_wins(self) -> None:
        store = InMemorySessionStore()
        store.set("c1", "s1")
        store.set("c1", "s2")
        assert store.get("c1") == "s2"
        assert len(store) == 1

    def test_conversations_isolated(self) -> None:
        store = InMemorySessionStore()
        store.set("c1", "s1")
        store.set("c2", "s2")
        assert store.get("c1") == "s1"
        assert store.get("c2") == "s2"
