"""Types describing the host application's side of the bridge."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python


class ToolDefinition(BaseModel):
    """A tool exported by the host's tool registry."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="Tool identifier used for execution")
    name: str | None = Field(default=None, description="Display name")
    description: str | dict[str, str] = Field(
        default="",
        description="Plain text or a mapping of locale to text",
    )
    parameters: dict[str, Any] | None = Field(
        default=None,
        description="JSON schema of the tool's parameters",
    )


class ToolResult(BaseModel):
    """Outcome of a host tool execution."""

    model_config = ConfigDict(extra="allow")

    success: bool
    data: Any = None
    error: str | None = None


class ChatMessage(BaseModel):
    """One message of the host's conversation history."""

    model_config = ConfigDict(extra="allow")

    role: str | None = None
    type: str | None = None
    content: str = ""

    @property
    def effective_role(self) -> str | None:
        """Role of the message, falling back to ``type`` for older hosts."""
        return self.role or self.type


class ModelInfo(BaseModel):
    """A model the agent can be asked to use."""

    id: str
    name: str
    description: str = ""


@runtime_checkable
class ToolsHost(Protocol):
    """The host's tool interface, consumed by the relay and the provider."""

    async def list(self) -> list[Any]:
        """Return the host's tool definitions."""
        ...

    async def execute(
        self,
        tool_id: str,
        params: dict[str, Any],
        user_id: str | None = None,
    ) -> Any:
        """Run *tool_id* with *params* and return its result."""
        ...


def coerce_tool_definitions(raw: list[Any]) -> list[ToolDefinition]:
    """Validate whatever the host returned from ``list()``."""
    return [
        item if isinstance(item, ToolDefinition) else ToolDefinition.model_validate(item)
        for item in raw
    ]


def tool_result_payload(result: Any) -> dict[str, Any]:
    """Serialize a host tool result for the relay wire format.

    The payload holds only JSON types: dates, sets, models and the like are
    converted. Raises ``PydanticSerializationError`` for values with no JSON
    form.
    """
    if isinstance(result, ToolResult):
        payload: dict[str, Any] = {"success": result.success}
        if result.data is not None:
            payload["data"] = result.data
        if result.error is not None:
            payload["error"] = result.error
        payload.update(result.model_extra or {})
    elif isinstance(result, BaseModel):
        payload = result.model_dump(mode="json")
    elif isinstance(result, dict):
        payload = dict(result)
    else:
        payload = {"success": True, "data": result}
    return to_jsonable_python(payload)
