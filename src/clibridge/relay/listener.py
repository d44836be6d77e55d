"""Loopback TCP relay between the bridge program and the host's tools.

Protocol: newline-delimited JSON over TCP on 127.0.0.1.

Request:  {"id": "...", "method": "execute", "toolId": "...", "params": {...}}
Response: {"id": "...", "result": {"success": true, "data": ...}}

Records with any other method, and lines that are not JSON objects, are
ignored without a response.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from pydantic_core import PydanticSerializationError

from clibridge.constants import RELAY_TIMEOUT
from clibridge.host import ToolsHost, tool_result_payload
from clibridge.relay.pending import PendingResults, RelayResult

logger = logging.getLogger(__name__)

_HOST = "127.0.0.1"

#: Maximum bytes per JSONL line from a bridge connection (16 MB).
_MAX_LINE_BYTES = 16 * 1_048_576


class ToolRelay:
    """TCP server forwarding ``execute`` records to the host tool interface.

    One relay is started per chat turn on an OS-assigned port and closed when
    the turn ends. Each connection is handled in its own task; a failing
    connection never takes the listener down.
    """

    def __init__(self, tools: ToolsHost, user_id: str | None = None) -> None:
        self._tools = tools
        self._user_id = user_id
        self._server: asyncio.Server | None = None
        self._port = 0
        self._connections: set[asyncio.Task[Any]] = set()
        self._results = PendingResults()
        self._closed = False

    @property
    def port(self) -> int:
        return self._port

    async def start(self) -> int:
        """Start listening on a fresh ephemeral port. Returns the port."""
        self._server = await asyncio.start_server(
            self._handle_client, _HOST, 0, limit=_MAX_LINE_BYTES,
        )
        self._port = self._server.sockets[0].getsockname()[1]
        logger.info("tool relay started on port %d", self._port)
        return self._port

    async def close(self) -> None:
        """Stop listening, drop open connections and fail pending waiters."""
        if self._closed:
            return
        self._closed = True
        if self._server is not None:
            self._server.close()
        for task in list(self._connections):
            task.cancel()
        for task in list(self._connections):
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        self._connections.clear()
        if self._server is not None:
            with contextlib.suppress(Exception):
                await self._server.wait_closed()
        self._results.close()
        logger.info("tool relay stopped (port=%d)", self._port)

    async def __aenter__(self) -> ToolRelay:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Result waiting
    # ------------------------------------------------------------------ #

    async def next_result(self, timeout: float = RELAY_TIMEOUT) -> RelayResult:
        """Wait for the next completed execution, in completion order."""
        return await self._results.next_result(timeout)

    async def wait_for_call(
        self, call_id: str, tool_id: str, timeout: float = RELAY_TIMEOUT,
    ) -> RelayResult:
        """Wait for the execution bound to *call_id*."""
        return await self._results.wait_for_call(call_id, tool_id, timeout)

    # ------------------------------------------------------------------ #
    # Connection handling
    # ------------------------------------------------------------------ #

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        logger.debug("relay client connected: %s", peer)
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                response = await self.handle_line(line)
                if response is None:
                    continue
                writer.write(encode_response(response))
                await writer.drain()
        except asyncio.CancelledError:
            pass
        except (ConnectionError, OSError, ValueError) as exc:
            logger.error("relay socket error (%s): %s", peer, exc)
        finally:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            if task is not None:
                self._connections.discard(task)
            logger.debug("relay client disconnected: %s", peer)

    async def handle_line(self, line: bytes | str) -> dict[str, Any] | None:
        """Process one relay record; return the response record, if any."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return None

        try:
            message = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.error("relay received invalid JSON: %s", exc)
            return None
        if not isinstance(message, dict) or message.get("method") != "execute":
            return None

        request_id = message.get("id")
        tool_id = message.get("toolId")
        if not isinstance(tool_id, str) or not tool_id:
            logger.error("relay execute record without toolId (id=%s)", request_id)
            return None
        raw_params = message.get("params")
        params = dict(raw_params) if isinstance(raw_params, dict) else {}

        self._results.started(str(request_id), tool_id)
        result = await self._execute(tool_id, params)
        self._results.deliver(
            RelayResult(request_id=str(request_id), tool_id=tool_id, result=result)
        )
        return {"id": request_id, "result": result}

    async def _execute(self, tool_id: str, params: dict[str, Any]) -> dict[str, Any]:
        logger.info("relay executing tool %s", tool_id)
        try:
            if self._user_id is not None:
                raw = await self._tools.execute(tool_id, params, self._user_id)
            else:
                raw = await self._tools.execute(tool_id, params)
        except Exception as exc:
            logger.exception("host tool %s failed", tool_id)
            return {"success": False, "error": str(exc) or type(exc).__name__}
        try:
            return tool_result_payload(raw)
        except PydanticSerializationError as exc:
            logger.error("host tool %s returned a result JSON cannot hold: %s", tool_id, exc)
            return {"success": False, "error": f"Tool result is not JSON serializable: {exc}"}


def encode_response(response: dict[str, Any]) -> bytes:
    """Serialize one response record as a JSON line.

    A result that still cannot be encoded is replaced by a failure result
    so the bridge always gets an answer.
    """
    try:
        text = json.dumps(response)
    except (TypeError, ValueError) as exc:
        logger.error("cannot encode relay response %s: %s", response.get("id"), exc)
        text = json.dumps({
            "id": response.get("id"),
            "result": {"success": False, "error": f"Tool result is not JSON serializable: {exc}"},
        })
    return text.encode("utf-8") + b"\n"
