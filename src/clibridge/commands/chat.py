"""clibridge chat — talk to the Claude CLI from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from clibridge.config.parser import ConfigError, load_settings, settings_from_mapping
from clibridge.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ThinkingEvent,
    ToolEndEvent,
    ToolStartEvent,
)
from clibridge.provider import ClaudeCodeProvider

#: Inputs that end the interactive loop.
_EXIT_WORDS = {"/exit", "/quit", "exit", "quit"}


@click.command()
@click.argument("prompt", required=False)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML settings file.",
)
@click.option("-m", "--model", default=None, help="Model alias (opus, sonnet, haiku).")
@click.option("--claude-path", default=None, help="Path to the claude binary.")
@click.option("--max-turns", type=int, default=None, help="Agent turn budget.")
@click.option(
    "--cwd",
    "working_directory",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Working directory for the CLI.",
)
@click.option("--conversation", "conversation_id", default=None, help="Conversation key.")
@click.option("--show-thinking", is_flag=True, help="Echo reasoning to stderr.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def chat(
    prompt: str | None,
    config_file: str | None,
    model: str | None,
    claude_path: str | None,
    max_turns: int | None,
    working_directory: str | None,
    conversation_id: str | None,
    show_thinking: bool,
    verbose: bool,
) -> None:
    """Run one turn with PROMPT, or an interactive session without it."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = settings_from_mapping(
            load_settings(Path(config_file) if config_file else None),
            model=model,
            claude_path=claude_path,
            max_turns=max_turns,
            working_directory=working_directory,
            conversation_id=conversation_id,
        )
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    provider = ClaudeCodeProvider(settings=settings)
    if prompt:
        if not asyncio.run(_run_turn(provider, prompt, show_thinking)):
            raise SystemExit(1)
        return

    asyncio.run(_repl(provider, show_thinking))


async def _repl(provider: ClaudeCodeProvider, show_thinking: bool) -> None:
    """Read prompts until EOF; turns share one conversation and resume."""
    while True:
        try:
            line = await asyncio.to_thread(click.prompt, "you", prompt_suffix="> ")
        except (EOFError, click.Abort):
            click.echo()
            return
        line = line.strip()
        if not line:
            continue
        if line in _EXIT_WORDS:
            return
        await _run_turn(provider, line, show_thinking)


async def _run_turn(provider: ClaudeCodeProvider, prompt: str, show_thinking: bool) -> bool:
    """Stream one turn to the terminal. Returns False if it failed."""
    messages = [{"role": "user", "content": prompt}]
    async for event in provider.chat(messages):
        if isinstance(event, ContentEvent):
            click.echo(event.text, nl=False)
        elif isinstance(event, ThinkingEvent):
            if show_thinking:
                click.secho(event.text, err=True, dim=True)
        elif isinstance(event, ToolStartEvent):
            click.secho(f"\n[tool] {event.name}", err=True, fg="cyan")
        elif isinstance(event, ToolEndEvent):
            if not event.success:
                click.secho(f"[tool] {event.name} failed: {event.error}", err=True, fg="yellow")
        elif isinstance(event, DoneEvent):
            click.echo()
            if event.usage is not None:
                click.secho(
                    f"[{event.usage.input_tokens} in / {event.usage.output_tokens} out]",
                    err=True,
                    dim=True,
                )
            return True
        elif isinstance(event, ErrorEvent):
            click.echo()
            click.secho(f"Error: {event.message}", err=True, fg="red")
            return False
    return True
