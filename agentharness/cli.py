"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys

import click

from agentharness.commands.agents_cmd import check_command, list_command
from agentharness.commands.config_cmd import config_group
from agentharness.commands.models_cmd import models_group
from agentharness.commands.run_cmd import run_command
from agentharness.commands.show_cmd import show_command
from agentharness.config import load_config


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool) -> None:
    """agentharness - run any coding agent CLI and get one event stream."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    config = load_config()
    if debug:
        level = logging.DEBUG
    else:
        level = logging.getLevelName((config.log_level or "warning").upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.getLogger().setLevel(level)

    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config"] = config


cli.add_command(run_command, "run")
cli.add_command(list_command, "list")
cli.add_command(check_command, "check")
cli.add_command(models_group, "models")
cli.add_command(config_group, "config")
cli.add_command(show_command, "show")


if __name__ == "__main__":
    cli()
