"""Load, validate, and resolve provider settings."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from clibridge.config.models import ProviderSettings
from clibridge.errors import ClibridgeError

#: Prefix of environment variables that override file settings.
ENV_PREFIX = "CLIBRIDGE_"


class ConfigError(ClibridgeError):
    """User-facing configuration error."""


def load_settings(path: Path | None = None) -> ProviderSettings:
    """Load provider settings from an optional YAML file plus the environment.

    Args:
        path: YAML settings file. If None, only defaults and
              ``CLIBRIDGE_*`` environment variables apply.

    Returns:
        A validated ProviderSettings instance.

    Raises:
        ConfigError: On missing file, bad YAML, or validation failure.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        config_path = _resolve_path(path)
        raw = _read_yaml(config_path)
        _load_env(config_path.parent)
    raw.update(_env_overrides(os.environ))
    return _validate(raw)


def settings_from_mapping(
    mapping: Mapping[str, Any] | ProviderSettings | None,
    **overrides: Any,
) -> ProviderSettings:
    """Validate host-supplied settings, applying non-None *overrides*."""
    if isinstance(mapping, ProviderSettings):
        raw = mapping.model_dump(exclude_unset=True)
    else:
        raw = dict(mapping or {})
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return _validate(raw)


def _resolve_path(path: Path) -> Path:
    resolved = Path(path)
    if not resolved.is_file():
        msg = f"Settings file not found: {resolved}"
        raise ConfigError(msg)
    return resolved


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read settings file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)

    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for name in ProviderSettings.model_fields:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    return overrides


def _validate(raw: dict[str, Any]) -> ProviderSettings:
    try:
        return ProviderSettings.model_validate(raw)
    except ValidationError as exc:
        parts: list[str] = []
        for err in exc.errors():
            loc = " → ".join(str(s) for s in err["loc"])
            msg = err["msg"]
            if "input should be" in msg.lower():
                msg = f"Invalid value: {msg}"
            parts.append(f"  {loc}: {msg}")
        joined = "\n".join(parts)
        msg = f"Settings validation failed:\n{joined}"
        raise ConfigError(msg) from exc
