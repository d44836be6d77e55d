"""clibridge: drive the Claude Code CLI as a streaming chat backend."""

__version__ = "0.1.0"
