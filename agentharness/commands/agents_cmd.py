"""CLI handlers for listing and checking agent backends."""

from __future__ import annotations

import json
import os
import sys

import click

from agentharness.commands._helpers import parse_backend
from agentharness.infra.agents.registry import all_backends, binary_version, describe, find_binary
from agentharness.models.backend import BackendSpec


def _probe(spec: BackendSpec) -> dict:
    path = find_binary(spec)
    return {
        "agent": spec.kind.value,
        "name": spec.display_name,
        "installed": path is not None,
        "path": path,
        "version": binary_version(path) if path else None,
    }


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_command(as_json: bool):
    """List supported agents and whether they are installed."""
    rows = [_probe(spec) for spec in all_backends()]
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    for row in rows:
        status = "installed" if row["installed"] else "not installed"
        version = row["version"] or ""
        click.echo(f"  {row['agent']:<10} {row['name']:<12} {status:<14} {version}")


@click.command("check")
@click.argument("agent")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--capabilities", is_flag=True, help="Show capability flags")
@click.option("--diagnose", is_flag=True, help="Show binary lookup and API key environment")
def check_command(agent: str, as_json: bool, capabilities: bool, diagnose: bool):
    """Check that an agent CLI is installed and usable."""
    spec = describe(parse_backend(agent))
    info = _probe(spec)
    if capabilities or diagnose:
        info["capabilities"] = spec.capabilities.to_dict()
    if diagnose:
        info["native_format"] = spec.native_format
        info["binary_candidates"] = list(spec.binary_candidates)
        # Only whether each key is set; never the value.
        info["api_keys"] = {name: bool(os.environ.get(name)) for name in spec.api_key_env_vars}

    if as_json:
        click.echo(json.dumps(info, indent=2))
    else:
        if info["installed"]:
            click.echo(f"{spec.display_name}: installed ({info['version'] or 'unknown version'})")
        else:
            click.echo(f"{spec.display_name}: not installed")
        if diagnose:
            click.echo(f"  Path: {info['path'] or '-'}")
            click.echo(f"  Candidates: {', '.join(spec.binary_candidates)}")
            click.echo(f"  Output format: {spec.native_format}")
            for name, is_set in info["api_keys"].items():
                click.echo(f"  {name}: {'set' if is_set else 'not set'}")
        if capabilities or diagnose:
            click.echo("  Capabilities:")
            for name, enabled in info["capabilities"].items():
                click.echo(f"    {name}: {'yes' if enabled else 'no'}")

    sys.exit(0 if info["installed"] else 1)
