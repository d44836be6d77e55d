"""clibridge models — list the model aliases the CLI accepts."""

from __future__ import annotations

import asyncio

import click

from clibridge.provider import ClaudeCodeProvider


@click.command()
def models() -> None:
    """List available models."""
    provider = ClaudeCodeProvider()
    for info in asyncio.run(provider.get_models()):
        click.echo(f"{info.id:<8} {info.name}: {info.description}")
