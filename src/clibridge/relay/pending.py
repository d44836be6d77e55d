"""Hand-off structure between relay connections and result waiters."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any

from clibridge.constants import RELAY_TIMEOUT
from clibridge.errors import RelayError, RelayTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayResult:
    """One completed host tool execution."""

    request_id: str
    tool_id: str
    result: dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.result.get("success"))

    @property
    def data(self) -> Any:
        return self.result.get("data")

    @property
    def error(self) -> str | None:
        error = self.result.get("error")
        return None if error is None else str(error)


class PendingResults:
    """Delivers completed results to waiters.

    Two disciplines share one structure:

    * ``next_result`` -- anonymous waiters served in completion order. A
      result with no waiter is queued; a waiter with nothing queued waits.
    * ``wait_for_call`` -- a waiter registered for a call id and tool id.
      The oldest such waiter for a tool is bound to the next request the
      relay starts for that tool (or to one already running), so concurrent
      calls to different tools never receive each other's result.

    Binding is by request id. When a keyed waiter gives up, the request
    bound to it (if one ever started) is dropped on completion instead of
    being handed to anyone else. A waiter that gives up before any request
    reached the relay leaves nothing behind.

    Only touched from the event loop thread.
    """

    def __init__(self) -> None:
        self._queue: deque[RelayResult] = deque()
        self._consumers: deque[asyncio.Future[RelayResult]] = deque()
        self._calls: dict[str, asyncio.Future[RelayResult]] = {}
        self._unbound: defaultdict[str, deque[str]] = defaultdict(deque)
        self._running: defaultdict[str, deque[str]] = defaultdict(deque)
        self._bound: dict[str, str] = {}
        self._closed = False

    def __len__(self) -> int:
        """Number of queued results nobody has claimed yet."""
        return len(self._queue)

    @property
    def waiting(self) -> int:
        """Number of registered waiters, keyed and anonymous."""
        live = sum(1 for f in self._consumers if not f.done())
        return live + sum(1 for f in self._calls.values() if not f.done())

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #

    def started(self, request_id: str, tool_id: str) -> None:
        """Record that the relay began executing *request_id*."""
        if self._closed:
            return
        call_id = self._pop_unbound(tool_id)
        if call_id is not None:
            self._bound[request_id] = call_id
        else:
            self._running[tool_id].append(request_id)

    def deliver(self, item: RelayResult) -> None:
        """Hand *item* to a waiter, or queue it."""
        if self._closed:
            logger.debug("relay closed, dropping result %s", item.request_id)
            return

        _discard(self._running, item.tool_id, item.request_id)

        call_id = self._bound.pop(item.request_id, None)
        if call_id is not None:
            future = self._calls.get(call_id)
            if future is not None and not future.done():
                future.set_result(item)
            else:
                logger.warning(
                    "dropping late result for call %s (tool %s, request %s)",
                    call_id,
                    item.tool_id,
                    item.request_id,
                )
            return

        call_id = self._pop_unbound(item.tool_id)
        if call_id is not None:
            self._calls[call_id].set_result(item)
            return

        while self._consumers:
            future = self._consumers.popleft()
            if not future.done():
                future.set_result(item)
                return

        self._queue.append(item)

    # ------------------------------------------------------------------ #
    # Consumer side
    # ------------------------------------------------------------------ #

    async def next_result(self, timeout: float = RELAY_TIMEOUT) -> RelayResult:
        """Return the next completed result in completion order."""
        self._check_open()
        if self._queue:
            return self._queue.popleft()

        future: asyncio.Future[RelayResult] = asyncio.get_running_loop().create_future()
        self._consumers.append(future)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise RelayTimeoutError(timeout) from None
        finally:
            if future in self._consumers:
                self._consumers.remove(future)

    def expect(self, call_id: str, tool_id: str) -> asyncio.Future[RelayResult]:
        """Register interest in the result of *call_id* running *tool_id*.

        A queued result for the same tool is claimed immediately; otherwise
        the oldest running request for the tool is bound to this call.
        """
        self._check_open()
        if call_id in self._calls:
            msg = f"Duplicate result waiter for call {call_id}"
            raise RelayError(msg)

        future: asyncio.Future[RelayResult] = asyncio.get_running_loop().create_future()
        self._calls[call_id] = future

        for item in self._queue:
            if item.tool_id == tool_id:
                self._queue.remove(item)
                future.set_result(item)
                return future

        running = self._running.get(tool_id)
        if running:
            self._bound[running.popleft()] = call_id
            if not running:
                del self._running[tool_id]
            return future

        self._unbound[tool_id].append(call_id)
        return future

    async def wait_for_call(
        self,
        call_id: str,
        tool_id: str,
        timeout: float = RELAY_TIMEOUT,
    ) -> RelayResult:
        """Wait for the result bound to *call_id*."""
        future = self._calls.get(call_id)
        if future is None:
            future = self.expect(call_id, tool_id)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise RelayTimeoutError(timeout, call_id) from None
        finally:
            self._calls.pop(call_id, None)
            _discard(self._unbound, tool_id, call_id)

    def _pop_unbound(self, tool_id: str) -> str | None:
        """Return the oldest live keyed waiter for *tool_id*, if any."""
        call_ids = self._unbound.get(tool_id)
        while call_ids:
            call_id = call_ids.popleft()
            future = self._calls.get(call_id)
            if future is not None and not future.done():
                if not call_ids:
                    del self._unbound[tool_id]
                return call_id
        self._unbound.pop(tool_id, None)
        return None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Fail every waiter and drop queued results."""
        if self._closed:
            return
        self._closed = True
        error = RelayError("Tool relay closed")
        for future in [*self._consumers, *self._calls.values()]:
            if not future.done():
                future.set_exception(error)
        self._consumers.clear()
        self._calls.clear()
        self._unbound.clear()
        self._running.clear()
        self._bound.clear()
        self._queue.clear()

    def _check_open(self) -> None:
        if self._closed:
            msg = "Tool relay closed"
            raise RelayError(msg)


def _discard(index: defaultdict[str, deque[str]], key: str, value: str) -> None:
    entries = index.get(key)
    if entries is None:
        return
    if value in entries:
        entries.remove(value)
    if not entries:
        del index[key]
