"""Bridge program: MCP over stdin/stdout, relaying tool calls over TCP.

Launched by the Claude CLI as an MCP server (see ``clibridge.bridge.config``).
Speaks MCP on stdin/stdout through the ``mcp`` SDK's low-level server and
forwards each ``tools/call`` to the ``ToolRelay`` listening on the host's
loopback port.

Usage:
    python -m clibridge.bridge.stdio_server --port PORT --tools-json JSON
    python -m clibridge.bridge.stdio_server --port PORT --tools-file PATH

Tool call flow:
    CLI -> MCP stdin/stdout -> stdio_server -> TCP -> ToolRelay -> host tools
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from clibridge import __version__
from clibridge.constants import BRIDGE_SERVER_NAME, RELAY_TIMEOUT
from clibridge.errors import BridgeToolError

logger = logging.getLogger(__name__)

#: Maximum bytes per relay response line (16 MB).
_MAX_LINE_BYTES = 16 * 1_048_576

RelayCall = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


async def call_relay(
    port: int,
    tool_id: str,
    params: dict[str, Any],
    timeout: float = RELAY_TIMEOUT,
) -> dict[str, Any]:
    """Execute *tool_id* through the relay on a fresh connection.

    Raises ``TimeoutError`` when no correlated response arrives within
    *timeout* seconds, ``ConnectionError`` when the relay hangs up first.
    """
    request_id = uuid.uuid4().hex
    request = {"id": request_id, "method": "execute", "toolId": tool_id, "params": params}

    async with asyncio.timeout(timeout):
        reader, writer = await asyncio.open_connection(
            "127.0.0.1", port, limit=_MAX_LINE_BYTES,
        )
        try:
            writer.write(json.dumps(request).encode("utf-8") + b"\n")
            await writer.drain()
            while True:
                line = await reader.readline()
                if not line:
                    msg = "relay closed the connection before responding"
                    raise ConnectionError(msg)
                try:
                    response = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(response, dict) and response.get("id") == request_id:
                    result = response.get("result")
                    return result if isinstance(result, dict) else {}
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()


def result_text(result: dict[str, Any]) -> str:
    """Render a relay result as the text of an MCP content block."""
    data = result.get("data")
    if data is not None:
        return json.dumps(data)
    error = result.get("error")
    if error:
        return str(error)
    return "OK"


class BridgeServer:
    """MCP server exposing a fixed list of host tools.

    ``server`` is the SDK's low-level server with ``tools/list`` and
    ``tools/call`` handlers registered. A failed call raises
    ``BridgeToolError``; the SDK turns it into a text result with
    ``isError`` set, so every call gets an answer.
    """

    def __init__(
        self,
        tools: list[dict[str, Any]],
        port: int,
        relay_call: RelayCall | None = None,
    ) -> None:
        self._tools = [types.Tool.model_validate(tool) for tool in tools]
        self._port = port
        self._relay_call = relay_call or (
            lambda tool_id, params: call_relay(self._port, tool_id, params)
        )

        self.server: Server = Server(BRIDGE_SERVER_NAME, version=__version__)
        self.server.list_tools()(self.list_tools)
        # Host tools validate their own parameters.
        self.server.call_tool(validate_input=False)(self.call_tool)

    async def list_tools(self) -> list[types.Tool]:
        return list(self._tools)

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None,
    ) -> list[types.TextContent]:
        """Forward one call to the relay and render its result."""
        try:
            result = await self._relay_call(name, dict(arguments or {}))
        except TimeoutError as exc:
            logger.error("relay call for %s timed out", name)
            raise BridgeToolError("timeout") from exc
        except Exception as exc:
            logger.error("relay call for %s failed: %s", name, exc)
            raise BridgeToolError(str(exc) or type(exc).__name__) from exc

        text = result_text(result)
        if not result.get("success"):
            raise BridgeToolError(text)
        return [types.TextContent(type="text", text=text)]

    async def serve(self) -> None:
        """Answer MCP requests on stdin/stdout until the client disconnects."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


def load_tools_payload(tools_json: str | None, tools_file: Path | None) -> list[dict[str, Any]]:
    """Decode the tool list handed over by the bridge config."""
    if tools_file is not None:
        tools_json = tools_file.read_text(encoding="utf-8")
    if not tools_json:
        return []
    tools = json.loads(tools_json)
    if not isinstance(tools, list):
        msg = "tool payload must be a JSON list"
        raise click.BadParameter(msg)
    return [tool for tool in tools if isinstance(tool, dict)]


@click.command()
@click.option("--port", type=int, required=True, help="Relay port on 127.0.0.1.")
@click.option("--tools-json", default=None, help="Tool list as inline JSON.")
@click.option(
    "--tools-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="File holding the tool list as JSON.",
)
def main(port: int, tools_json: str | None, tools_file: Path | None) -> None:
    """Serve host tools to the Claude CLI over MCP stdio."""
    # stdout carries the protocol; diagnostics go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    tools = load_tools_payload(tools_json, tools_file)
    asyncio.run(BridgeServer(tools, port).serve())


if __name__ == "__main__":
    main()
