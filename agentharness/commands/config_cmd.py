"""CLI handlers for config commands."""

from __future__ import annotations

from pathlib import Path

import click

from agentharness.commands._helpers import get_config
from agentharness.config import PROJECT_CONFIG_NAME, init_config


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
@click.option("--global", "global_", is_flag=True, help="Create the user-level config instead")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(global_: bool, force: bool):
    """Create a commented configuration file."""
    path = get_config().config_path if global_ else Path.cwd() / PROJECT_CONFIG_NAME
    if path.exists() and not force:
        click.echo(f"{path} already exists (use --force to overwrite)", err=True)
        raise SystemExit(1)
    init_config(path)
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
def config_show():
    """Show the effective configuration."""
    config = get_config()
    click.echo(f"Config file: {config.config_path}{'' if config.config_path.exists() else ' (not found)'}")
    click.echo(f"Project file: {config.project_path or '(none)'}")
    click.echo(f"  Default agent: {config.default_agent or '(auto-detect)'}")
    click.echo(f"  Default model: {config.default_model or '(backend default)'}")
    click.echo(f"  Default permissions: {config.default_permissions or 'full-access'}")
    timeout = f"{config.default_timeout_secs:g}s" if config.default_timeout_secs else "none"
    click.echo(f"  Default timeout: {timeout}")
    click.echo(f"  Log level: {config.log_level or 'warning'}")
    click.echo(f"  Session log: {'enabled' if config.session_log else 'disabled'} ({config.resolved_session_dir})")
    click.echo(f"  Registry: {config.registry.url}")
    click.echo(f"  Registry cache: {config.registry.resolved_cache_path}")

    if config.agents:
        click.echo("\n  Agents:")
        for name, settings in sorted(config.agents.items()):
            parts = []
            if settings.binary:
                parts.append(f"binary={settings.binary}")
            if settings.model:
                parts.append(f"model={settings.model}")
            if settings.extra_args:
                parts.append(f"extra_args={' '.join(settings.extra_args)}")
            if settings.models:
                parts.append(f"model overrides={len(settings.models)}")
            click.echo(f"    {name}: {', '.join(parts) or '(defaults)'}")

    if config.models:
        click.echo("\n  Custom models:")
        for name in sorted(config.models):
            click.echo(f"    {name}")


@config_group.command("path")
def config_path():
    """Print the config file locations."""
    config = get_config()
    click.echo(str(config.config_path))
    if config.project_path:
        click.echo(str(config.project_path))
