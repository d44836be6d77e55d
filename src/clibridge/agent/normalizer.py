"""Translate Claude CLI stream-json records into normalized events."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from clibridge.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    NormalizedEvent,
    SessionInitEvent,
    ThinkingEvent,
    TokenUsage,
    ToolStartEvent,
)

logger = logging.getLogger(__name__)

#: Characters of a raw result record quoted when it carries no message.
_RAW_DUMP_CHARS = 500


def generate_tool_call_id() -> str:
    """Return a fresh ``tc_<millis>_<random>`` call identifier."""
    return f"tc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


def parse_line(line: str) -> dict[str, Any] | None:
    """Decode one stdout line, returning ``None`` for anything but a JSON object."""
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("discarding non-JSON line: %s", line[:200])
        return None
    if not isinstance(record, dict):
        return None
    return record


class EventNormalizer:
    """Stateful translator for one CLI invocation.

    Claude CLI ``--output-format stream-json --verbose`` emits these
    top-level record types:

    * ``system``              -- ``init`` subtype carries the session id.
    * ``content_block_delta`` -- incremental ``text_delta`` / ``thinking_delta``.
    * ``assistant``           -- a full message; ``text``, ``tool_use`` and
      ``thinking`` blocks nested in ``message.content[]``.
    * ``result``              -- final record, success or failure.

    Anything else (``user`` tool-result echoes, unknown types) is dropped.
    """

    def __init__(self, stderr_text: Callable[[], str] | None = None) -> None:
        self._stderr_text = stderr_text or (lambda: "")
        self.session_id: str | None = None
        self.finished = False

    def feed_line(self, line: str) -> list[NormalizedEvent]:
        """Parse and normalize a single raw line."""
        record = parse_line(line)
        if record is None:
            return []
        return self.normalize(record)

    def normalize(self, record: dict[str, Any]) -> list[NormalizedEvent]:
        """Map one decoded record to zero or more events."""
        if self.finished:
            return []

        record_type = record.get("type")

        if record_type == "system":
            return self._on_system(record)
        if record_type == "content_block_delta":
            return self._on_delta(record)
        if record_type == "assistant":
            return self._on_assistant(record)
        if record_type == "result":
            self.finished = True
            return [self._on_result(record)]
        return []

    # ------------------------------------------------------------------ #
    # Record handlers
    # ------------------------------------------------------------------ #

    def _on_system(self, record: dict[str, Any]) -> list[NormalizedEvent]:
        if record.get("subtype") != "init":
            return []
        session_id = record.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            return []
        self.session_id = session_id
        return [SessionInitEvent(session_id=session_id)]

    def _on_delta(self, record: dict[str, Any]) -> list[NormalizedEvent]:
        delta = record.get("delta")
        if not isinstance(delta, dict):
            return []
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str):
                return [ContentEvent(text=text)]
        elif delta_type == "thinking_delta":
            text = delta.get("thinking")
            if isinstance(text, str):
                return [ThinkingEvent(text=text)]
        return []

    def _on_assistant(self, record: dict[str, Any]) -> list[NormalizedEvent]:
        message = record.get("message")
        if not isinstance(message, dict):
            return []
        blocks = message.get("content")
        if not isinstance(blocks, list):
            return []

        events: list[NormalizedEvent] = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            event = self._on_block(block)
            if event is not None:
                events.append(event)
        return events

    def _on_block(self, block: dict[str, Any]) -> NormalizedEvent | None:
        block_type = block.get("type")

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                return ContentEvent(text=text)

        elif block_type == "tool_use":
            call_id = block.get("id")
            if not isinstance(call_id, str) or not call_id:
                call_id = generate_tool_call_id()
            return ToolStartEvent(
                name=str(block.get("name", "")),
                input=block.get("input"),
                call_id=call_id,
            )

        elif block_type == "thinking":
            text = block.get("thinking")
            if isinstance(text, str) and text:
                return ThinkingEvent(text=text)

        return None

    def _on_result(self, record: dict[str, Any]) -> NormalizedEvent:
        subtype = record.get("subtype")
        if record.get("is_error") or (subtype and subtype != "success"):
            return ErrorEvent(message=f"Claude Code: {_error_detail(record)}")

        usage = _parse_usage(record.get("usage"))
        if usage is not None and usage.input_tokens == 0 and usage.output_tokens == 0:
            message = (
                "Claude Code returned empty result (0 tokens). "
                f"Result: {json.dumps(record)}"
            )
            stderr_text = self._stderr_text().strip()
            if stderr_text:
                message += f"; stderr: {stderr_text}"
            return ErrorEvent(message=message)

        return DoneEvent(usage=usage, session_id=self.session_id)


def _error_detail(record: dict[str, Any]) -> str:
    for key in ("result", "error"):
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    return json.dumps(record)[:_RAW_DUMP_CHARS]


def _parse_usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    return TokenUsage(
        input_tokens=_as_count(raw.get("input_tokens")),
        output_tokens=_as_count(raw.get("output_tokens")),
    )


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return max(int(value), 0)
