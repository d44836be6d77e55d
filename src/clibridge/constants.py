"""Shared constants for the clibridge runtime."""

from __future__ import annotations

PROVIDER_ID = "claude-code"
PROVIDER_NAME = "Claude Code"

DEFAULT_CLAUDE_PATH = "claude"
DEFAULT_MAX_TURNS = 25
DEFAULT_MODEL = "sonnet"
DEFAULT_CONVERSATION_ID = "default"

#: Name of the MCP server entry the bridge program is registered under.
BRIDGE_SERVER_NAME = "host-tools"

#: Prefix the agent puts in front of tool names served by the bridge.
BRIDGE_TOOL_PREFIX = f"mcp__{BRIDGE_SERVER_NAME}__"

#: Allow-list entry covering every bridged host tool.
BRIDGE_TOOL_WILDCARD = f"{BRIDGE_TOOL_PREFIX}*"

#: Built-in agent tools allowed when host tools are bridged in.
BUILTIN_ALLOWED_TOOLS: tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "Bash",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "NotebookEdit",
)

#: Seconds any relay round trip may take before it fails.
RELAY_TIMEOUT = 30.0

MODELS: tuple[dict[str, str], ...] = (
    {
        "id": "opus",
        "name": "Claude Opus",
        "description": "Most capable model for complex tasks",
    },
    {
        "id": "sonnet",
        "name": "Claude Sonnet",
        "description": "Best balance of speed and capability",
    },
    {
        "id": "haiku",
        "name": "Claude Haiku",
        "description": "Fastest model for simple tasks",
    },
)
