"""Claude Code chat provider: one CLI run per chat turn."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any

from clibridge.agent.process import ProcessInvocation, run_claude_code
from clibridge.bridge.config import create_bridge_config
from clibridge.config.models import ProviderSettings
from clibridge.config.parser import settings_from_mapping
from clibridge.constants import (
    BRIDGE_TOOL_PREFIX,
    BUILTIN_ALLOWED_TOOLS,
    MODELS,
    PROVIDER_ID,
    PROVIDER_NAME,
    RELAY_TIMEOUT,
)
from clibridge.errors import RelayError, RelayTimeoutError
from clibridge.events import (
    ChatEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    SessionInitEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
    is_terminal,
)
from clibridge.host import ChatMessage, ModelInfo, ToolsHost
from clibridge.relay.listener import ToolRelay
from clibridge.session.store import InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)

CLIRunner = Callable[[ProcessInvocation], AsyncIterator[NormalizedEvent]]


def _as_message(message: ChatMessage | Mapping[str, Any]) -> ChatMessage:
    if isinstance(message, ChatMessage):
        return message
    return ChatMessage.model_validate(dict(message))


def extract_prompt(messages: Sequence[ChatMessage | Mapping[str, Any]]) -> str:
    """Return the content of the last user message, or ``""``."""
    for raw in reversed(messages):
        message = _as_message(raw)
        if message.effective_role == "user" and message.content:
            return message.content
    return ""


def build_system_context(messages: Sequence[ChatMessage | Mapping[str, Any]]) -> str:
    """Join system and instruction messages with blank lines."""
    parts = []
    for raw in messages:
        message = _as_message(raw)
        if message.effective_role in ("system", "instruction") and message.content:
            parts.append(message.content)
    return "\n\n".join(parts)


def build_prompt(messages: Sequence[ChatMessage | Mapping[str, Any]]) -> str:
    """Combine system context and the last user message into one prompt."""
    user_prompt = extract_prompt(messages)
    if not user_prompt:
        return ""
    context = build_system_context(messages)
    if context:
        return f"{context}\n\n---\n\n{user_prompt}"
    return user_prompt


def bridged_tool_id(tool_name: str) -> str | None:
    """Return the host tool id for a bridged tool name, else ``None``."""
    if tool_name.startswith(BRIDGE_TOOL_PREFIX):
        return tool_name[len(BRIDGE_TOOL_PREFIX):] or None
    return None


class ClaudeCodeProvider:
    """Streams chat turns through the Claude CLI.

    Each ``chat`` call runs one CLI process. When the host exposes tools,
    a ``ToolRelay`` and a bridge MCP config are set up for the turn and torn
    down when the turn ends, however it ends.
    """

    id = PROVIDER_ID
    name = PROVIDER_NAME

    def __init__(
        self,
        tools: ToolsHost | None = None,
        session_store: SessionStore | None = None,
        settings: ProviderSettings | Mapping[str, Any] | None = None,
        runner: CLIRunner | None = None,
        tool_timeout: float = RELAY_TIMEOUT,
    ) -> None:
        self._tools = tools
        self._sessions = session_store if session_store is not None else InMemorySessionStore()
        self._settings = settings_from_mapping(settings)
        self._runner = runner or run_claude_code
        self._tool_timeout = tool_timeout

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    async def get_models(self) -> list[ModelInfo]:
        """Return the fixed list of model aliases the CLI accepts."""
        logger.debug("returning %d models", len(MODELS))
        return [ModelInfo(**model) for model in MODELS]

    async def chat(
        self,
        messages: Sequence[ChatMessage | Mapping[str, Any]],
        *,
        model: str | None = None,
        settings: ProviderSettings | Mapping[str, Any] | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Run one chat turn and yield its events.

        Always ends with exactly one ``DoneEvent`` or ``ErrorEvent``.
        """
        try:
            turn = self._resolve_settings(settings, model)
        except Exception as exc:
            logger.error("invalid chat settings: %s", exc)
            yield ErrorEvent(message=str(exc))
            return

        prompt = build_prompt(messages)
        if not prompt:
            yield ErrorEvent(message="No user message found")
            return

        session_id = self._sessions.get(turn.conversation_id)
        logger.info(
            "starting chat (model=%s, max_turns=%d, host_tools=%s, resume=%s)",
            turn.model,
            turn.max_turns,
            turn.enable_host_tools,
            bool(session_id),
        )

        async with contextlib.AsyncExitStack() as stack:
            try:
                relay, mcp_config_path = await self._setup_bridge(turn, stack)
                invocation = ProcessInvocation(
                    prompt=prompt,
                    model=turn.model,
                    claude_path=turn.claude_path,
                    max_turns=turn.max_turns,
                    session_id=session_id,
                    mcp_config_path=mcp_config_path,
                    allowed_tools=BUILTIN_ALLOWED_TOOLS if relay is not None else None,
                    cwd=turn.working_directory,
                )
                stream = await stack.enter_async_context(
                    contextlib.aclosing(self._runner(invocation))
                )
                async for event in stream:
                    if isinstance(event, SessionInitEvent):
                        self._sessions.set(turn.conversation_id, event.session_id)
                        continue

                    if isinstance(event, ContentEvent | ThinkingEvent):
                        yield event
                        continue

                    if isinstance(event, ToolStartEvent):
                        yield event
                        yield await self._finish_tool(event, relay)
                        continue

                    if is_terminal(event):
                        yield event
                        return

                # CLI exited cleanly without a result record.
                yield DoneEvent()

            except Exception as exc:
                logger.exception("chat turn failed")
                yield ErrorEvent(message=str(exc) or type(exc).__name__)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _resolve_settings(
        self,
        settings: ProviderSettings | Mapping[str, Any] | None,
        model: str | None,
    ) -> ProviderSettings:
        """Layer per-turn settings over the provider's own."""
        overrides: dict[str, Any] = {}
        if settings is not None:
            turn = settings_from_mapping(settings)
            overrides = turn.model_dump(exclude_unset=True)
        return settings_from_mapping({**self._settings.model_dump(), **overrides}, model=model)

    async def _setup_bridge(
        self,
        turn: ProviderSettings,
        stack: contextlib.AsyncExitStack,
    ) -> tuple[ToolRelay | None, str | None]:
        """Start the relay and write the bridge config, if tools apply.

        Failures are logged and the turn continues without host tools.
        """
        if not turn.enable_host_tools or self._tools is None:
            return None, None

        try:
            definitions = await self._tools.list()
            if not definitions:
                return None, None

            relay = await stack.enter_async_context(ToolRelay(self._tools, user_id=turn.user_id))
            bridge = stack.enter_context(create_bridge_config(definitions, relay.port))
        except Exception as exc:
            logger.warning("failed to set up tool bridge, continuing without host tools: %s", exc)
            return None, None

        logger.info("tool bridge started (port=%d, tools=%d)", relay.port, len(definitions))
        return relay, str(bridge.config_path)

    async def _finish_tool(self, event: ToolStartEvent, relay: ToolRelay | None) -> ToolEndEvent:
        """Produce the ``tool_end`` matching *event*."""
        tool_id = bridged_tool_id(event.name)
        if tool_id is None or relay is None:
            # Built-in tools run inside the agent; nothing to wait for.
            return ToolEndEvent(name=event.name, call_id=event.call_id, success=True)

        try:
            result = await relay.wait_for_call(event.call_id, tool_id, self._tool_timeout)
        except RelayTimeoutError as exc:
            logger.warning("tool %s (%s): %s", tool_id, event.call_id, exc)
            return ToolEndEvent(
                name=event.name, call_id=event.call_id, success=False, error=str(exc),
            )
        except RelayError as exc:
            return ToolEndEvent(
                name=event.name, call_id=event.call_id, success=False, error=str(exc),
            )

        return ToolEndEvent(
            name=event.name,
            call_id=event.call_id,
            success=result.success,
            result=result.data,
            error=result.error,
        )
