"""Build the MCP config that makes the Claude CLI launch the bridge program."""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import clibridge
from clibridge.constants import BRIDGE_SERVER_NAME
from clibridge.host import ToolDefinition, coerce_tool_definitions

logger = logging.getLogger(__name__)

#: Locale preferred when a tool description is localized.
DEFAULT_LOCALE = "en"

#: Payloads at least this long go to a temp file instead of the command line.
INLINE_PAYLOAD_LIMIT = 100_000

BRIDGE_MODULE = "clibridge.bridge.stdio_server"


def localized_text(value: str | Mapping[str, str] | None, locale: str = DEFAULT_LOCALE) -> str:
    """Resolve a possibly-localized string.

    Prefers *locale* (even when empty), then the first available
    translation, then ``""``.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if locale in value:
        return str(value[locale])
    for text in value.values():
        return str(text)
    return ""


def to_mcp_tool(definition: ToolDefinition) -> dict[str, Any]:
    """Translate a host tool definition into an MCP ``tools/list`` entry."""
    params = definition.parameters
    if params:
        input_schema: dict[str, Any] = {
            "type": "object",
            "properties": params.get("properties") or {},
            "required": params.get("required") or [],
        }
    else:
        input_schema = {"type": "object", "properties": {}}

    return {
        "name": definition.id,
        "description": localized_text(definition.description),
        "inputSchema": input_schema,
    }


def to_mcp_tools(definitions: Iterable[Any]) -> list[dict[str, Any]]:
    return [to_mcp_tool(d) for d in coerce_tool_definitions(list(definitions))]


@dataclass
class BridgeConfig:
    """Files backing one turn's bridge. Remove them with ``cleanup()``."""

    config_path: Path
    payload_path: Path | None = None
    server: dict[str, Any] = field(default_factory=dict)

    def cleanup(self) -> None:
        """Delete the config and payload files, best-effort."""
        for path in (self.config_path, self.payload_path):
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.debug("could not remove %s: %s", path, exc)

    def __enter__(self) -> BridgeConfig:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


def bridge_env(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment entry letting the bridge import the running clibridge.

    Puts the directory clibridge is loaded from first on ``PYTHONPATH``,
    so the bridge also starts from a source checkout.
    """
    source = os.environ if environ is None else environ
    package_root = str(Path(clibridge.__file__).resolve().parent.parent)
    paths = [package_root]
    existing = source.get("PYTHONPATH")
    if existing:
        paths.append(existing)
    return {"PYTHONPATH": os.pathsep.join(paths)}


def _write_temp(prefix: str, suffix: str, text: str, tmp_dir: Path | None) -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=tmp_dir)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(text)
    return Path(name)


def create_bridge_config(
    definitions: Iterable[Any],
    port: int,
    *,
    tmp_dir: Path | None = None,
    python: str | None = None,
    inline_limit: int = INLINE_PAYLOAD_LIMIT,
) -> BridgeConfig:
    """Write an MCP config registering the bridge program for *port*.

    The translated tool list travels as a JSON payload: inline on the
    command line when short, otherwise in a temp file next to the config.
    """
    payload = json.dumps(to_mcp_tools(definitions))
    args = ["-m", BRIDGE_MODULE, "--port", str(port)]

    payload_path: Path | None = None
    if len(payload) < inline_limit:
        args.extend(["--tools-json", payload])
    else:
        payload_path = _write_temp("clibridge-tools-", ".json", payload, tmp_dir)
        args.extend(["--tools-file", str(payload_path)])

    server = {"command": python or sys.executable, "args": args, "env": bridge_env()}
    config = {"mcpServers": {BRIDGE_SERVER_NAME: server}}

    try:
        config_path = _write_temp(
            "clibridge-mcp-config-", ".json", json.dumps(config, indent=2), tmp_dir,
        )
    except OSError:
        if payload_path is not None:
            payload_path.unlink(missing_ok=True)
        raise

    logger.debug(
        "bridge config written to %s (payload %s)",
        config_path,
        payload_path or "inline",
    )
    return BridgeConfig(config_path=config_path, payload_path=payload_path, server=server)
