"""Shared helpers for building user-facing CLI failure messages."""

from __future__ import annotations

#: Maximum stderr characters to include in error messages.
MAX_STDERR_CHARS = 500


def format_stderr_preview(stderr_text: str, max_chars: int = MAX_STDERR_CHARS) -> str:
    """Return the leading *max_chars* of stripped stderr output."""
    return stderr_text.strip()[:max_chars]


def format_spawn_error(claude_path: str, exc: OSError, path_env: str | None) -> str:
    """Describe a failure to start the CLI process."""
    if isinstance(exc, FileNotFoundError):
        return (
            f'Claude CLI not found at "{claude_path}". Is it installed? '
            f"PATH={path_env or '(not set)'}"
        )
    return f'Failed to spawn Claude CLI at "{claude_path}": {exc}'


def format_exit_error(claude_path: str, returncode: int | None, stderr_text: str) -> str:
    """Describe a CLI process that exited without a final result record."""
    parts = [f'Claude Code ("{claude_path}") exited with code {returncode}']
    preview = format_stderr_preview(stderr_text)
    if preview:
        parts.append(f"stderr: {preview}")
    return "; ".join(parts)
