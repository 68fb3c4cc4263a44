"""CLI handlers for model registry commands."""

from __future__ import annotations

import json
import sys

import click

from agentharness.commands._helpers import _run, build_model_registry, get_config, parse_backend
from agentharness.errors import RegistryFetchFailed
from agentharness.models.model_entry import BACKEND_KEYS
from agentharness.services.model_registry import ResolutionStatus


@click.group("models")
def models_group():
    """Inspect and update the model alias registry."""
    pass


@models_group.command("list")
@click.option("--agent", "-a", default="", help="Only models mapped for this agent")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def models_list(agent: str, as_json: bool):
    """List model aliases merged from every registry layer."""
    config = get_config()
    registry = build_model_registry(config)
    backend = parse_backend(agent) if agent else None
    entries = registry.list(backend)

    if as_json:
        click.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return
    if not entries:
        click.echo("No models found.")
        return
    for entry in entries:
        click.echo(f"  {entry.name:<16} {entry.provider:<10} {entry.description}")
        for key in BACKEND_KEYS:
            if key in entry.backends:
                click.echo(f"      {key}: {entry.backends[key]}")
    if registry.store.is_stale(config.registry.ttl_secs):
        click.echo(
            "note: model registry cache is missing or stale; run 'agentharness models update'",
            err=True,
        )


@models_group.command("resolve")
@click.argument("name")
@click.option("--agent", "-a", required=True, help="Agent to resolve for")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def models_resolve(name: str, agent: str, as_json: bool):
    """Show what a model name resolves to for an agent."""
    registry = build_model_registry(get_config())
    resolution = registry.resolve(name, parse_backend(agent))
    if as_json:
        click.echo(json.dumps(resolution.to_dict(), indent=2))
    elif resolution.status is ResolutionStatus.RESOLVED:
        click.echo(f"{name} -> {resolution.model_id} (from {resolution.layer})")
    elif resolution.status is ResolutionStatus.NO_MAPPING:
        click.echo(f"{name} has no mapping for {agent}", err=True)
    else:
        click.echo(f"{name} is not a known alias; passed through as-is")
    sys.exit(1 if resolution.status is ResolutionStatus.NO_MAPPING else 0)


@models_group.command("update")
def models_update():
    """Fetch the latest registry and replace the local cache."""
    config = get_config()
    registry = build_model_registry(config)
    try:
        cache = _run(registry.update())
    except RegistryFetchFailed as e:
        click.echo(f"warning: {e}", err=True)
        click.echo("The existing cache was left unchanged.", err=True)
        sys.exit(1)
    click.echo(f"Updated {len(cache.models)} models in {cache.path}")


@models_group.command("path")
def models_path():
    """Print the registry cache location."""
    config = get_config()
    registry = build_model_registry(config)
    cache = registry.store.load()
    click.echo(str(cache.path))
    if cache.updated_at is None:
        click.echo("  (no cache yet; using built-in models)", err=True)
    elif registry.store.is_stale(config.registry.ttl_secs):
        click.echo(f"  (stale; last updated {cache.updated_at.isoformat()})", err=True)
