"""Root CLI group and version flag."""

import click

from clibridge import __version__
from clibridge.commands.chat import chat
from clibridge.commands.models import models


@click.group()
@click.version_option(version=__version__, prog_name="clibridge")
def cli() -> None:
    """clibridge — use the Claude Code CLI as a streaming chat backend."""


cli.add_command(chat)
cli.add_command(models)
