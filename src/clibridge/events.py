"""Pydantic v2 models for normalized stream events."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class TokenUsage(BaseModel):
    """Token counts reported by the agent for one turn."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)


class _EventBase(BaseModel):
    """Common configuration shared by every stream event."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class ContentEvent(_EventBase):
    """A chunk of assistant text."""

    type: Literal["content"] = "content"
    text: str = Field(description="Text chunk")


class ThinkingEvent(_EventBase):
    """A chunk of assistant reasoning."""

    type: Literal["thinking"] = "thinking"
    text: str = Field(description="Reasoning chunk")


class ToolStartEvent(_EventBase):
    """The agent started a tool call."""

    type: Literal["tool_start"] = "tool_start"
    name: str = Field(description="Tool name as seen by the agent")
    input: Any = Field(default=None, description="Tool arguments")
    call_id: str = Field(description="Identifier unique within one invocation")


class ToolEndEvent(_EventBase):
    """A tool call finished. Only produced by the provider."""

    type: Literal["tool_end"] = "tool_end"
    name: str = Field(description="Tool name as seen by the agent")
    call_id: str = Field(description="Identifier of the matching tool_start")
    success: bool = Field(description="Whether the tool reported success")
    result: Any = Field(default=None, description="Tool payload, if any")
    error: str | None = Field(default=None, description="Failure text, if any")


class SessionInitEvent(_EventBase):
    """The agent announced the resumption token for this conversation."""

    type: Literal["session_init"] = "session_init"
    session_id: str = Field(description="Opaque resumption token")


class DoneEvent(_EventBase):
    """Successful end of a stream."""

    type: Literal["done"] = "done"
    usage: TokenUsage | None = None
    session_id: str | None = None


class ErrorEvent(_EventBase):
    """Failed end of a stream."""

    type: Literal["error"] = "error"
    message: str = Field(description="Human-readable failure description")


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


NormalizedEvent = Annotated[
    Annotated[ContentEvent, Tag("content")]
    | Annotated[ThinkingEvent, Tag("thinking")]
    | Annotated[ToolStartEvent, Tag("tool_start")]
    | Annotated[SessionInitEvent, Tag("session_init")]
    | Annotated[DoneEvent, Tag("done")]
    | Annotated[ErrorEvent, Tag("error")],
    Discriminator(_event_discriminator),
]
"""Events produced by the process adapter."""

ChatEvent = Annotated[
    Annotated[ContentEvent, Tag("content")]
    | Annotated[ThinkingEvent, Tag("thinking")]
    | Annotated[ToolStartEvent, Tag("tool_start")]
    | Annotated[ToolEndEvent, Tag("tool_end")]
    | Annotated[DoneEvent, Tag("done")]
    | Annotated[ErrorEvent, Tag("error")],
    Discriminator(_event_discriminator),
]
"""Events surfaced by the provider to its caller."""

TERMINAL_TYPES = frozenset({"done", "error"})


def is_terminal(event: _EventBase) -> bool:
    """Return True for events that end a stream."""
    return getattr(event, "type", None) in TERMINAL_TYPES
