"""Exception types raised by clibridge."""

from __future__ import annotations


class ClibridgeError(Exception):
    """Base class for clibridge errors."""


class RelayError(ClibridgeError):
    """A tool relay operation failed."""


class RelayTimeoutError(RelayError, TimeoutError):
    """No relay result arrived within the allotted time."""

    def __init__(self, timeout: float, call_id: str | None = None) -> None:
        self.timeout = timeout
        self.call_id = call_id
        target = f"call {call_id}" if call_id else "next result"
        super().__init__(f"Timed out after {timeout:.0f}s waiting for {target}")


class BridgeToolError(ClibridgeError):
    """A bridged tool call failed; the message is shown to the agent."""
