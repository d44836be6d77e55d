"""Tests for the Claude Code chat provider."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from clibridge.agent.process import ProcessInvocation
from clibridge.bridge.stdio_server import call_relay
from clibridge.constants import BUILTIN_ALLOWED_TOOLS
from clibridge.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    SessionInitEvent,
    ThinkingEvent,
    TokenUsage,
    ToolEndEvent,
    ToolStartEvent,
)
from clibridge.host import ToolResult
from clibridge.provider import (
    ClaudeCodeProvider,
    bridged_tool_id,
    build_prompt,
    extract_prompt,
)
from clibridge.session.store import InMemorySessionStore

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

_USER = [{"role": "user", "content": "hi"}]


class FakeRunner:
    """Stands in for ``run_claude_code``, replaying scripted events."""

    def __init__(
        self,
        *scripts: list[NormalizedEvent],
        on_start: Callable[[ProcessInvocation], Any] | None = None,
    ) -> None:
        self.scripts = list(scripts)
        self.on_start = on_start
        self.invocations: list[ProcessInvocation] = []
        self.closed = False

    async def __call__(self, invocation: ProcessInvocation) -> AsyncIterator[NormalizedEvent]:
        self.invocations.append(invocation)
        script = self.scripts.pop(0) if self.scripts else []
        try:
            for event in script:
                if isinstance(event, ToolStartEvent) and self.on_start is not None:
                    self.on_start(invocation)
                yield event
        finally:
            self.closed = True


class FakeTools:
    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results = results or {}
        self.calls: list[tuple[str, dict[str, Any], str | None]] = []

    async def list(self) -> list[Any]:
        return [{"id": tool_id, "description": f"{tool_id} tool"} for tool_id in self.results]

    async def execute(
        self, tool_id: str, params: dict[str, Any], user_id: str | None = None,
    ) -> Any:
        self.calls.append((tool_id, params, user_id))
        return self.results[tool_id]


def _bridge_port(invocation: ProcessInvocation) -> int:
    """Read the relay port out of the MCP config the provider wrote."""
    assert invocation.mcp_config_path is not None
    config = json.loads(Path(invocation.mcp_config_path).read_text())
    args = config["mcpServers"]["host-tools"]["args"]
    return int(args[args.index("--port") + 1])


def _bridge_calls(tool_id: str, params: dict[str, Any]) -> tuple[Callable[[ProcessInvocation], Any], list]:
    """Simulate the bridge program calling the relay when a tool starts."""
    tasks: list[asyncio.Task[Any]] = []

    def on_start(invocation: ProcessInvocation) -> None:
        port = _bridge_port(invocation)
        tasks.append(asyncio.create_task(call_relay(port, tool_id, params, timeout=5)))

    return on_start, tasks


async def _collect(provider: ClaudeCodeProvider, messages: list[Any], **kwargs: Any) -> list[Any]:
    return [event async for event in provider.chat(messages, **kwargs)]


# ------------------------------------------------------------------ #
# Prompt assembly
# ------------------------------------------------------------------ #


class TestPromptAssembly:
    def test_last_user_message(self) -> None:
        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]
        assert extract_prompt(messages) == "second"

    def test_type_field_fallback(self) -> None:
        assert extract_prompt([{"type": "user", "content": "legacy"}]) == "legacy"

    def test_no_user_message(self) -> None:
        assert extract_prompt([{"role": "assistant", "content": "x"}]) == ""
        assert build_prompt([]) == ""

    def test_system_context_prepended(self) -> None:
        messages = [
            {"role": "system", "content": "Be brief."},
            {"role": "instruction", "content": "Use metric units."},
            {"role": "user", "content": "Weather?"},
        ]
        assert build_prompt(messages) == "Be brief.\n\nUse metric units.\n\n---\n\nWeather?"

    def test_bridged_tool_id(self) -> None:
        assert bridged_tool_id("mcp__host-tools__weather") == "weather"
        assert bridged_tool_id("Read") is None
        assert bridged_tool_id("mcp__other__x") is None


# ------------------------------------------------------------------ #
# Provider basics
# ------------------------------------------------------------------ #


class TestProviderBasics:
    def test_identity(self) -> None:
        provider = ClaudeCodeProvider()
        assert provider.id == "claude-code"
        assert provider.name == "Claude Code"

    async def test_models(self) -> None:
        models = await ClaudeCodeProvider().get_models()
        assert [m.id for m in models] == ["opus", "sonnet", "haiku"]
        assert all(m.name and m.description for m in models)

    async def test_no_user_message(self) -> None:
        runner = FakeRunner()
        events = await _collect(ClaudeCodeProvider(runner=runner), [{"role": "system", "content": "x"}])
        assert events == [ErrorEvent(message="No user message found")]
        assert runner.invocations == []

    async def test_invalid_settings(self) -> None:
        runner = FakeRunner()
        provider = ClaudeCodeProvider(runner=runner)
        events = await _collect(provider, _USER, settings={"maxTurns": "lots"})
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert runner.invocations == []


# ------------------------------------------------------------------ #
# Turns
# ------------------------------------------------------------------ #


class TestChatTurns:
    async def test_stream_and_resume(self) -> None:
        usage = TokenUsage(input_tokens=10, output_tokens=2)
        runner = FakeRunner(
            [
                SessionInitEvent(session_id="sess-1"),
                ThinkingEvent(text="hm"),
                ContentEvent(text="Hello"),
                DoneEvent(usage=usage, session_id="sess-1"),
            ],
            [ContentEvent(text="Again"), DoneEvent()],
        )
        store = InMemorySessionStore()
        provider = ClaudeCodeProvider(session_store=store, runner=runner)

        first = await _collect(provider, _USER, settings={"conversationId": "c1"})
        assert first == [
            ThinkingEvent(text="hm"),
            ContentEvent(text="Hello"),
            DoneEvent(usage=usage, session_id="sess-1"),
        ]
        assert store.get("c1") == "sess-1"

        await _collect(provider, _USER, settings={"conversationId": "c1"})
        assert runner.invocations[0].session_id is None
        assert runner.invocations[1].session_id == "sess-1"

    async def test_conversations_do_not_share_sessions(self) -> None:
        runner = FakeRunner(
            [SessionInitEvent(session_id="sess-a"), DoneEvent()],
            [DoneEvent()],
        )
        provider = ClaudeCodeProvider(runner=runner)
        await _collect(provider, _USER, settings={"conversationId": "a"})
        await _collect(provider, _USER, settings={"conversationId": "b"})
        assert runner.invocations[1].session_id is None

    async def test_settings_reach_invocation(self, tmp_path: Path) -> None:
        runner = FakeRunner([DoneEvent()])
        provider = ClaudeCodeProvider(
            runner=runner,
            settings={"claudePath": "/opt/claude", "maxTurns": "3"},
        )
        await _collect(
            provider, _USER, model="opus", settings={"workingDirectory": str(tmp_path)},
        )
        invocation = runner.invocations[0]
        assert invocation.claude_path == "/opt/claude"
        assert invocation.max_turns == 3
        assert invocation.model == "opus"
        assert invocation.cwd == str(tmp_path)
        assert invocation.mcp_config_path is None
        assert invocation.allowed_tools is None

    async def test_error_ends_turn(self) -> None:
        runner = FakeRunner([ContentEvent(text="a"), ErrorEvent(message="boom"), ContentEvent(text="b")])
        events = await _collect(ClaudeCodeProvider(runner=runner), _USER)
        assert events == [ContentEvent(text="a"), ErrorEvent(message="boom")]

    async def test_missing_terminal_event_becomes_done(self) -> None:
        runner = FakeRunner([ContentEvent(text="partial")])
        events = await _collect(ClaudeCodeProvider(runner=runner), _USER)
        assert events == [ContentEvent(text="partial"), DoneEvent()]

    async def test_runner_crash_becomes_error(self) -> None:
        async def crashing(invocation: ProcessInvocation) -> AsyncIterator[NormalizedEvent]:
            yield ContentEvent(text="x")
            raise RuntimeError("pipe broke")

        events = await _collect(ClaudeCodeProvider(runner=crashing), _USER)
        assert events == [ContentEvent(text="x"), ErrorEvent(message="pipe broke")]

    async def test_builtin_tool_ends_immediately(self) -> None:
        start = ToolStartEvent(name="Read", input={"file": "a"}, call_id="toolu_1")
        runner = FakeRunner([start, ContentEvent(text="done"), DoneEvent()])
        events = await _collect(ClaudeCodeProvider(runner=runner), _USER)
        assert events == [
            start,
            ToolEndEvent(name="Read", call_id="toolu_1", success=True),
            ContentEvent(text="done"),
            DoneEvent(),
        ]


# ------------------------------------------------------------------ #
# Host tools
# ------------------------------------------------------------------ #


class TestHostTools:
    async def test_bridged_tool_roundtrip(self) -> None:
        tools = FakeTools({"weather": ToolResult(success=True, data={"temp": 21})})
        on_start, tasks = _bridge_calls("weather", {"city": "Oslo"})
        start = ToolStartEvent(
            name="mcp__host-tools__weather", input={"city": "Oslo"}, call_id="toolu_9",
        )
        runner = FakeRunner([start, DoneEvent()], on_start=on_start)
        provider = ClaudeCodeProvider(tools=tools, runner=runner)

        events = await _collect(provider, _USER, settings={"userId": "u1"})

        assert events == [
            start,
            ToolEndEvent(
                name="mcp__host-tools__weather",
                call_id="toolu_9",
                success=True,
                result={"temp": 21},
            ),
            DoneEvent(),
        ]
        assert tools.calls == [("weather", {"city": "Oslo"}, "u1")]
        assert (await tasks[0]) == {"success": True, "data": {"temp": 21}}

        invocation = runner.invocations[0]
        assert invocation.allowed_tools == BUILTIN_ALLOWED_TOOLS
        assert invocation.mcp_config_path is not None
        assert not Path(invocation.mcp_config_path).exists()

    async def test_bridged_tool_failure(self) -> None:
        tools = FakeTools({"weather": ToolResult(success=False, error="unknown city")})
        on_start, _ = _bridge_calls("weather", {})
        start = ToolStartEvent(name="mcp__host-tools__weather", call_id="toolu_2")
        runner = FakeRunner([start, DoneEvent()], on_start=on_start)

        events = await _collect(ClaudeCodeProvider(tools=tools, runner=runner), _USER)

        assert events[1] == ToolEndEvent(
            name="mcp__host-tools__weather",
            call_id="toolu_2",
            success=False,
            error="unknown city",
        )

    async def test_bridged_tool_timeout(self) -> None:
        tools = FakeTools({"weather": ToolResult(success=True)})
        start = ToolStartEvent(name="mcp__host-tools__weather", call_id="toolu_3")
        runner = FakeRunner([start, DoneEvent()])
        provider = ClaudeCodeProvider(tools=tools, runner=runner, tool_timeout=0.05)

        events = await _collect(provider, _USER)

        end = events[1]
        assert isinstance(end, ToolEndEvent)
        assert end.success is False
        assert end.error is not None
        assert "Timed out" in end.error
        assert events[-1] == DoneEvent()

    async def test_host_tools_disabled(self) -> None:
        runner = FakeRunner([DoneEvent()])
        provider = ClaudeCodeProvider(tools=FakeTools({"weather": None}), runner=runner)
        await _collect(provider, _USER, settings={"enableHostTools": "off"})
        assert runner.invocations[0].mcp_config_path is None
        assert runner.invocations[0].allowed_tools is None

    async def test_empty_tool_list_skips_bridge(self) -> None:
        runner = FakeRunner([DoneEvent()])
        await _collect(ClaudeCodeProvider(tools=FakeTools(), runner=runner), _USER)
        assert runner.invocations[0].mcp_config_path is None

    async def test_tool_listing_failure_continues_without_tools(self) -> None:
        class BrokenTools(FakeTools):
            async def list(self) -> list[Any]:
                raise RuntimeError("registry offline")

        runner = FakeRunner([ContentEvent(text="ok"), DoneEvent()])
        events = await _collect(ClaudeCodeProvider(tools=BrokenTools(), runner=runner), _USER)
        assert events == [ContentEvent(text="ok"), DoneEvent()]
        assert runner.invocations[0].mcp_config_path is None

    async def test_abandoned_turn_releases_resources(self) -> None:
        tools = FakeTools({"weather": ToolResult(success=True)})
        runner = FakeRunner([ContentEvent(text="one"), ContentEvent(text="two"), DoneEvent()])
        provider = ClaudeCodeProvider(tools=tools, runner=runner)

        stream = provider.chat(_USER)
        first = await anext(stream)
        invocation = runner.invocations[0]
        port = _bridge_port(invocation)
        await stream.aclose()

        assert first == ContentEvent(text="one")
        assert runner.closed
        assert invocation.mcp_config_path is not None
        assert not Path(invocation.mcp_config_path).exists()
        with pytest.raises(OSError):
            await call_relay(port, "weather", {}, timeout=2)
