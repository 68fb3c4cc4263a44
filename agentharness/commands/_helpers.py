"""Shared helpers for CLI command modules."""

from __future__ import annotations

import asyncio
import sys
from typing import NoReturn

import click

from agentharness.config import HarnessConfig, load_config
from agentharness.errors import HarnessError
from agentharness.infra.agents.registry import available_backends
from agentharness.infra.registry_store import RegistryStore
from agentharness.models.backend import BackendKind
from agentharness.services.command_resolver import CommandResolver
from agentharness.services.model_registry import ModelRegistryResolver

USAGE_EXIT_CODE = 2


def _run(coro):
    """Run an async function from sync context."""
    return asyncio.run(coro)


def get_config() -> HarnessConfig:
    """Return the config loaded by the root command, loading it if needed."""
    ctx = click.get_current_context(silent=True)
    if ctx is not None:
        obj = ctx.find_root().obj
        if isinstance(obj, dict) and "config" in obj:
            return obj["config"]
    return load_config()


def build_model_registry(config: HarnessConfig) -> ModelRegistryResolver:
    store = RegistryStore(config.registry.resolved_cache_path, url=config.registry.url)
    return ModelRegistryResolver(config, store)


def build_resolver(config: HarnessConfig) -> CommandResolver:
    return CommandResolver(build_model_registry(config), config)


def fail(error: Exception | str, exit_code: int = USAGE_EXIT_CODE) -> NoReturn:
    """Print an error to stderr and exit."""
    click.echo(f"error: {error}", err=True)
    sys.exit(exit_code)


def parse_backend(name: str) -> BackendKind:
    try:
        return BackendKind.parse(name)
    except HarnessError as e:
        raise click.BadParameter(str(e)) from e


def select_agent(explicit: str, config: HarnessConfig) -> BackendKind:
    """Pick the backend: explicit flag, then config default, then the only installed one."""
    if explicit:
        return parse_backend(explicit)
    if config.default_agent:
        return parse_backend(config.default_agent)
    installed = available_backends()
    if len(installed) == 1:
        return installed[0].kind
    if not installed:
        raise click.UsageError("No supported agent CLI found on PATH; pass --agent")
    names = ", ".join(spec.kind.value for spec in installed)
    raise click.UsageError(f"Several agents are installed ({names}); pass --agent")
