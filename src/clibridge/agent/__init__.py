"""Claude CLI process adapter and stream normalizer."""

from clibridge.agent.normalizer import EventNormalizer, generate_tool_call_id, parse_line
from clibridge.agent.process import (
    ProcessInvocation,
    build_args,
    build_env,
    iter_lines,
    resolve_claude_path,
    run_claude_code,
)

__all__ = [
    "EventNormalizer",
    "ProcessInvocation",
    "build_args",
    "build_env",
    "generate_tool_call_id",
    "iter_lines",
    "parse_line",
    "resolve_claude_path",
    "run_claude_code",
]
