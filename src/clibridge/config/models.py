"""Pydantic v2 models for provider settings."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from clibridge.constants import (
    DEFAULT_CLAUDE_PATH,
    DEFAULT_CONVERSATION_ID,
    DEFAULT_MAX_TURNS,
    DEFAULT_MODEL,
)

_FALSE_WORDS = {"off", "false", "no", "0", "disabled"}


class ProviderSettings(BaseModel):
    """Per-turn settings. Hosts usually hand these over as strings."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    claude_path: str = Field(
        default=DEFAULT_CLAUDE_PATH,
        alias="claudePath",
        description="CLI binary name or absolute path",
    )
    working_directory: str | None = Field(
        default=None,
        alias="workingDirectory",
        description="Directory the CLI runs in (default: system temp dir)",
    )
    max_turns: int = Field(
        default=DEFAULT_MAX_TURNS,
        alias="maxTurns",
        ge=1,
        description="Agent turn budget per chat turn",
    )
    enable_host_tools: bool = Field(
        default=True,
        alias="enableHostTools",
        description="Bridge the host's tools into the agent",
    )
    conversation_id: str = Field(
        default=DEFAULT_CONVERSATION_ID,
        alias="conversationId",
        description="Key used to resume the agent's session",
    )
    model: str = Field(default=DEFAULT_MODEL, description="Model alias or id")
    user_id: str | None = Field(
        default=None,
        alias="userId",
        description="Acting user passed to host tool executions",
    )

    @field_validator("claude_path", "conversation_id", "model", mode="before")
    @classmethod
    def _blank_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("working_directory", "user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("max_turns", mode="before")
    @classmethod
    def _parse_turns(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_MAX_TURNS
        return value

    @field_validator("enable_host_tools", mode="before")
    @classmethod
    def _parse_switch(cls, value: Any) -> Any:
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip().lower() not in _FALSE_WORDS
        return value
