"""CLI handler for the show command."""

from __future__ import annotations

import json
from pathlib import Path

import click

from agentharness.commands._helpers import fail
from agentharness.formatters import OUTPUT_FORMATS, get_formatter
from agentharness.models.event import Event, event_from_dict


def read_session_log(path: Path) -> list[Event]:
    """Load the events of an NDJSON session log written by ``run --log-session``."""
    events: list[Event] = []
    with open(path, encoding="utf-8") as f:
        for number, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                events.append(event_from_dict(json.loads(line)))
            except (ValueError, TypeError) as e:
                raise ValueError(f"{path}:{number}: {e}") from e
    return events


@click.command("show")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="markdown",
    show_default=True,
    help="Output format",
)
def show_command(path: Path, output_format: str):
    """Render a logged session in any run output format."""
    try:
        events = read_session_log(path)
    except ValueError as e:
        fail(e, exit_code=1)
    formatter = get_formatter(output_format)
    for event in events:
        formatter(event)
    formatter.finish()
