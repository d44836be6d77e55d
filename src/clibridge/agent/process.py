"""Process adapter: spawns the Claude CLI and streams normalized events."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import shutil
import tempfile
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from clibridge.agent.helpers import format_exit_error, format_spawn_error
from clibridge.agent.normalizer import EventNormalizer
from clibridge.constants import (
    BRIDGE_TOOL_WILDCARD,
    DEFAULT_CLAUDE_PATH,
    DEFAULT_MAX_TURNS,
    DEFAULT_MODEL,
)
from clibridge.events import ErrorEvent, NormalizedEvent

logger = logging.getLogger(__name__)

#: Env var that makes the CLI refuse to run as a nested session.
_NESTED_SESSION_ENV_KEY = "CLAUDE_CODE_ENTRY_POINT"

#: Bytes requested per stdout read.
_READ_CHUNK = 65_536

#: Stderr bytes retained for diagnostics.
_MAX_STDERR_BYTES = 65_536

#: Seconds a finished CLI gets to exit on its own before SIGTERM.
_SHUTDOWN_WAIT = 5.0

#: Seconds to wait after SIGTERM before SIGKILL.
_SIGTERM_WAIT = 3.0

#: Install locations probed when the binary is not on PATH.
COMMON_INSTALL_PATHS: tuple[str, ...] = (
    "/usr/local/bin/claude",
    "/usr/bin/claude",
    "~/.npm-global/bin/claude",
    "/root/.npm-global/bin/claude",
    "/home/node/.npm-global/bin/claude",
    "~/.local/bin/claude",
    "~/.claude/local/claude",
)


@dataclass(frozen=True)
class ProcessInvocation:
    """Everything needed to run the CLI once."""

    prompt: str
    model: str = DEFAULT_MODEL
    claude_path: str = DEFAULT_CLAUDE_PATH
    max_turns: int = DEFAULT_MAX_TURNS
    session_id: str | None = None
    mcp_config_path: str | None = None
    allowed_tools: tuple[str, ...] | None = None
    cwd: str | None = None


# ------------------------------------------------------------------ #
# Invocation building
# ------------------------------------------------------------------ #


def resolve_claude_path(configured: str) -> str:
    """Best-effort lookup of the CLI binary. Never raises.

    Absolute paths are trusted as-is. Otherwise PATH is searched, then a
    handful of common install locations. If nothing matches, the configured
    value is returned so the spawn itself reports the failure.
    """
    if os.path.isabs(configured) or "\\" in configured:
        return configured

    try:
        found = shutil.which(configured)
    except OSError as exc:
        logger.debug("PATH lookup for %r failed: %s", configured, exc)
        found = None
    if found:
        return found

    for candidate in COMMON_INSTALL_PATHS:
        path = Path(candidate).expanduser()
        try:
            if path.is_file():
                return str(path)
        except OSError:
            continue

    return configured


def is_root() -> bool:
    """Return True when running with superuser privileges."""
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def build_args(invocation: ProcessInvocation, *, root: bool | None = None) -> list[str]:
    """Build the CLI argument vector (without the binary itself)."""
    if root is None:
        root = is_root()

    args = [
        "-p",
        invocation.prompt,
        "--output-format",
        "stream-json",
        "--verbose",
        "--model",
        invocation.model,
        "--max-turns",
        str(invocation.max_turns),
    ]

    # The CLI rejects this flag under a superuser identity.
    if not root:
        args.append("--dangerously-skip-permissions")

    if invocation.session_id:
        args.extend(["--resume", invocation.session_id])

    if invocation.mcp_config_path:
        args.extend(["--mcp-config", invocation.mcp_config_path])

    if invocation.allowed_tools:
        args.extend(["--allowedTools", *invocation.allowed_tools, BRIDGE_TOOL_WILDCARD])

    return args


def build_env(base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy the environment without the nested-session marker."""
    source = os.environ if base is None else base
    return {k: v for k, v in source.items() if k != _NESTED_SESSION_ENV_KEY}


# ------------------------------------------------------------------ #
# Stream plumbing
# ------------------------------------------------------------------ #


async def iter_lines(
    stream: asyncio.StreamReader, chunk_size: int = _READ_CHUNK,
) -> AsyncIterator[str]:
    """Yield newline-terminated records from *stream*.

    A trailing fragment without a newline is flushed at EOF only if it is
    non-empty after stripping.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer


class StderrBuffer:
    """Accumulates a subprocess's stderr up to a byte cap."""

    def __init__(self, limit: int = _MAX_STDERR_BYTES) -> None:
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0

    async def drain(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            remaining = self._limit - self._size
            if remaining > 0:
                kept = chunk[:remaining]
                self._chunks.append(kept)
                self._size += len(kept)

    def text(self) -> str:
        return b"".join(self._chunks).decode(errors="replace")


async def _terminate(proc: asyncio.subprocess.Process, grace: float) -> None:
    """Wait *grace* seconds for a natural exit, then SIGTERM, then SIGKILL."""
    if proc.returncode is not None:
        return

    if grace > 0:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=grace)
            return

    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


# ------------------------------------------------------------------ #
# Runner
# ------------------------------------------------------------------ #


async def run_claude_code(
    invocation: ProcessInvocation,
    *,
    env: Mapping[str, str] | None = None,
) -> AsyncIterator[NormalizedEvent]:
    """Run the CLI once and yield normalized events.

    The sequence ends after the first ``done`` or ``error`` event, or when
    the CLI closes stdout. The subprocess is always reaped, including when
    the caller abandons iteration (``aclose``).
    """
    claude_path = resolve_claude_path(invocation.claude_path)
    args = build_args(invocation)
    cwd = invocation.cwd or tempfile.gettempdir()
    cli_env = build_env(env)

    logger.debug(
        "spawning %s (model=%s, max_turns=%d, resume=%s, mcp=%s)",
        claude_path,
        invocation.model,
        invocation.max_turns,
        bool(invocation.session_id),
        bool(invocation.mcp_config_path),
    )

    try:
        proc = await asyncio.create_subprocess_exec(
            claude_path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=cli_env,
        )
    except OSError as exc:
        logger.error("failed to spawn %s: %s", claude_path, exc)
        yield ErrorEvent(
            message=format_spawn_error(claude_path, exc, cli_env.get("PATH")),
        )
        return

    stderr = StderrBuffer()
    normalizer = EventNormalizer(stderr_text=stderr.text)
    stderr_task = asyncio.create_task(stderr.drain(proc.stderr))

    try:
        if proc.stdout is not None:
            async for line in iter_lines(proc.stdout):
                for event in normalizer.feed_line(line):
                    yield event
                if normalizer.finished:
                    return

        returncode = await proc.wait()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(asyncio.shield(stderr_task), timeout=1.0)

        if returncode != 0:
            stderr_text = stderr.text()
            logger.error(
                "%s exited with code %s: %s",
                claude_path,
                returncode,
                stderr_text.strip()[:200],
            )
            yield ErrorEvent(
                message=format_exit_error(claude_path, returncode, stderr_text),
            )
    finally:
        grace = _SHUTDOWN_WAIT if normalizer.finished else 0.0
        await _terminate(proc, grace)
        stderr_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await stderr_task
