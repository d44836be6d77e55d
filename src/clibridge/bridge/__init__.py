"""MCP bridge program and the config that launches it."""

from clibridge.bridge.config import (
    BridgeConfig,
    bridge_env,
    create_bridge_config,
    localized_text,
    to_mcp_tool,
    to_mcp_tools,
)

__all__ = [
    "BridgeConfig",
    "bridge_env",
    "create_bridge_config",
    "localized_text",
    "to_mcp_tool",
    "to_mcp_tools",
]
