"""Loopback relay that serves the agent's tool calls from the host."""

from clibridge.relay.listener import ToolRelay
from clibridge.relay.pending import PendingResults, RelayResult

__all__ = ["PendingResults", "RelayResult", "ToolRelay"]
