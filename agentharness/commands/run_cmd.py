"""CLI handler for the run command."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from agentharness.commands._helpers import _run, build_resolver, fail, get_config, select_agent
from agentharness.errors import HarnessError
from agentharness.formatters import OUTPUT_FORMATS, get_formatter
from agentharness.infra.session_log import SessionLogger
from agentharness.services.command_resolver import RunRequest, format_dry_run
from agentharness.services.run_service import RunService, ndjson_sink


def _read_prompt(prompt: str | None, prompt_file: Path | None) -> str:
    if prompt is not None:
        return prompt
    if prompt_file is not None:
        return prompt_file.read_text()
    stdin = click.get_text_stream("stdin")
    if not stdin.isatty():
        return stdin.read()
    return ""


@click.command("run", context_settings={"ignore_unknown_options": True})
@click.option("--agent", "-a", default="", help="Agent backend (claude, codex, opencode, cursor)")
@click.option("--prompt", "-p", default=None, help="Prompt text (default: --prompt-file or stdin)")
@click.option(
    "--prompt-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the prompt from a file",
)
@click.option("--cwd", "-d", default=None, help="Working directory for the agent")
@click.option("--model", "-m", default=None, help="Model alias or backend model id")
@click.option("--permissions", default=None, help="full-access (default) or read-only")
@click.option("--timeout", type=float, default=None, help="Kill the agent after this many seconds")
@click.option(
    "--output",
    "-o",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="stream-json",
    show_default=True,
    help="Output format",
)
@click.option(
    "--output-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the NDJSON event stream to this file",
)
@click.option("--max-turns", type=int, default=None, help="Maximum agent turns")
@click.option("--max-budget", type=float, default=None, help="Maximum spend in USD")
@click.option("--system-prompt", default=None, help="Replace the agent's system prompt")
@click.option("--append-system-prompt", default=None, help="Append to the agent's system prompt")
@click.option("--binary", default=None, help="Path to the agent binary")
@click.option("--echo-prompt", is_flag=True, help="Emit the prompt as a user message event")
@click.option("--log-session/--no-log-session", default=None, help="Write a session log")
@click.option("--dry-run", is_flag=True, help="Print the resolved command without running it")
@click.argument("extra", nargs=-1, type=click.UNPROCESSED)
def run_command(
    agent: str,
    prompt: str | None,
    prompt_file: Path | None,
    cwd: str | None,
    model: str | None,
    permissions: str | None,
    timeout: float | None,
    output_format: str,
    output_file: Path | None,
    max_turns: int | None,
    max_budget: float | None,
    system_prompt: str | None,
    append_system_prompt: str | None,
    binary: str | None,
    echo_prompt: bool,
    log_session: bool | None,
    dry_run: bool,
    extra: tuple[str, ...],
):
    """Run an agent and stream normalized events.

    Arguments after `--` are passed to the agent CLI unchanged.
    """
    config = get_config()
    backend = select_agent(agent, config)
    prompt_text = _read_prompt(prompt, prompt_file)
    if not prompt_text.strip() and not dry_run:
        raise click.UsageError("No prompt given; use --prompt, --prompt-file or stdin")

    request = RunRequest(
        backend=backend,
        prompt=prompt_text,
        model=model,
        permission_mode=permissions,
        extra_args=extra,
        cwd=cwd,
        system_prompt=system_prompt,
        append_system_prompt=append_system_prompt,
        max_turns=max_turns,
        max_budget_usd=max_budget,
        binary=binary,
    )
    resolver = build_resolver(config)
    try:
        for warning in resolver.validate(request):
            click.echo(f"warning: {warning}", err=True)
        command = resolver.resolve_request(request)
    except (HarnessError, ValueError) as e:
        fail(e)

    if dry_run:
        click.echo(format_dry_run(command))
        return

    formatter = get_formatter(output_format)
    sinks = [formatter]
    tee = None
    if output_file is not None:
        tee = open(output_file, "w", encoding="utf-8")
        sinks.append(ndjson_sink(tee))
    if log_session if log_session is not None else config.session_log:
        sinks.append(SessionLogger(config.resolved_session_dir, prompt=prompt_text))

    def sink(event):
        for target in sinks:
            target(event)

    timeout = timeout if timeout is not None else config.default_timeout_secs
    try:
        result = _run(RunService().run(command, sink, timeout=timeout, echo_prompt=echo_prompt))
    finally:
        formatter.finish()
        if tee is not None:
            tee.close()
    sys.exit(0 if result.success else 1)
