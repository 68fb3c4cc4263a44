"""Turns a run request into a concrete, launchable command."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from agentharness.config import HarnessConfig
from agentharness.errors import InvalidWorkDir, ModelUnsupportedForBackend, UnknownAlias
from agentharness.infra.agents.registry import describe, find_binary
from agentharness.models.backend import BackendKind, BackendSpec, PermissionMode
from agentharness.models.command import ResolvedCommand
from agentharness.services.model_registry import ModelRegistryResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunRequest:
    """Caller-facing options for one run, before resolution."""

    backend: BackendKind | str
    prompt: str = ""
    model: str | None = None
    permission_mode: PermissionMode | str | None = None
    extra_args: tuple[str, ...] = ()
    cwd: str | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    max_turns: int | None = None
    max_budget_usd: float | None = None
    binary: str | None = None
    env: dict[str, str] = field(default_factory=dict)


class CommandResolver:
    """Builds ResolvedCommand objects from the backend flag tables.

    Argument order is fixed: required flags, model, permission flags,
    capability-gated options, configured extra args, caller extra args,
    and finally the prompt when the backend does not read it from stdin.
    """

    def __init__(
        self,
        models: ModelRegistryResolver | None = None,
        config: HarnessConfig | None = None,
    ) -> None:
        self._config = config or HarnessConfig()
        self._models = models or ModelRegistryResolver(self._config)

    def resolve(
        self,
        backend: BackendKind | str,
        model: str | None = None,
        permission_mode: PermissionMode | str | None = None,
        extra_args: tuple[str, ...] | list[str] = (),
        prompt: str = "",
        **options,
    ) -> ResolvedCommand:
        request = RunRequest(
            backend=backend,
            prompt=prompt,
            model=model,
            permission_mode=permission_mode,
            extra_args=tuple(extra_args),
            **options,
        )
        return self.resolve_request(request)

    def resolve_request(self, request: RunRequest) -> ResolvedCommand:
        spec = describe(request.backend)
        settings = self._config.agent(spec.kind)

        model_id = self._resolve_model(spec, request.model, settings.model or self._config.default_model)
        mode = PermissionMode.parse(request.permission_mode or self._config.default_permissions)
        cwd = self._resolve_cwd(request.cwd)

        args: list[str] = list(spec.required_args)
        if model_id:
            args.extend([spec.model_flag, model_id])
        args.extend(spec.permission_flags(mode))
        args.extend(self._option_args(spec, request))
        args.extend(settings.extra_args)
        args.extend(request.extra_args)

        stdin_payload: str | None = None
        if spec.capabilities.accepts_stdin_prompt:
            stdin_payload = request.prompt
        elif request.prompt:
            args.append(request.prompt)

        return ResolvedCommand(
            backend=spec.kind,
            executable=self._executable(spec, request.binary or settings.binary),
            args=tuple(args),
            env=dict(request.env),
            stdin_payload=stdin_payload,
            cwd=cwd,
            model=model_id,
            prompt=request.prompt,
        )

    def validate(self, request: RunRequest) -> list[str]:
        """Return warnings for options the backend will ignore."""
        spec = describe(request.backend)
        caps = spec.capabilities
        warnings: list[str] = []
        checks = [
            (request.system_prompt, caps.supports_system_prompt, "--system-prompt"),
            (request.append_system_prompt, caps.supports_append_system_prompt, "--append-system-prompt"),
            (request.max_turns, caps.supports_max_turns, "--max-turns"),
            (request.max_budget_usd, caps.supports_budget, "--max-budget"),
        ]
        for value, supported, flag in checks:
            if value is not None and not supported:
                warnings.append(f"{spec.display_name} does not support {flag}; it will be ignored")
        if request.model and not caps.supports_model:
            warnings.append(f"{spec.display_name} does not support model selection; --model will be ignored")
        return warnings

    def _resolve_model(self, spec: BackendSpec, requested: str | None, configured: str) -> str | None:
        if not spec.capabilities.supports_model:
            return None
        if requested:
            try:
                return self._models.resolve_alias(requested, spec.kind)
            except UnknownAlias:
                return requested
        if configured:
            # A configured default that this backend cannot map is dropped
            # rather than failing every run against that backend.
            try:
                return self._models.resolve_alias(configured, spec.kind)
            except UnknownAlias:
                return configured
            except ModelUnsupportedForBackend:
                logger.warning(
                    "Configured model %r has no mapping for %s; using the backend default",
                    configured,
                    spec.kind.value,
                )
        return None

    @staticmethod
    def _option_args(spec: BackendSpec, request: RunRequest) -> list[str]:
        caps = spec.capabilities
        args: list[str] = []
        if request.system_prompt is not None and caps.supports_system_prompt:
            args.extend(["--system-prompt", request.system_prompt])
        if request.append_system_prompt is not None and caps.supports_append_system_prompt:
            args.extend(["--append-system-prompt", request.append_system_prompt])
        if request.max_turns is not None and caps.supports_max_turns:
            args.extend(["--max-turns", str(request.max_turns)])
        if request.max_budget_usd is not None and caps.supports_budget:
            args.extend(["--max-budget-usd", f"{request.max_budget_usd:g}"])
        return args

    @staticmethod
    def _resolve_cwd(cwd: str | None) -> str | None:
        if cwd is None:
            return None
        path = Path(cwd).expanduser()
        if not path.is_dir():
            raise InvalidWorkDir(cwd)
        return str(path.resolve())

    @staticmethod
    def _executable(spec: BackendSpec, override: str | None) -> str:
        if override:
            return override
        # Fall back to the bare name so dry-run output stays stable; the
        # launcher reports the missing binary.
        return find_binary(spec) or spec.default_binary


def format_dry_run(command: ResolvedCommand) -> str:
    """Render a command for display without launching it."""
    lines = [
        f"Binary: {command.executable}",
        f"Args:   {' '.join(shlex.quote(a) for a in command.args)}",
    ]
    if command.env:
        env = " ".join(f"{k}={shlex.quote(v)}" for k, v in sorted(command.env.items()))
        lines.append(f"Env:    {env}")
    if command.cwd:
        lines.append(f"Cwd:    {command.cwd}")
    if command.stdin_payload is not None:
        lines.append(f"Stdin:  {len(command.stdin_payload.encode())} bytes (prompt)")
    return "\n".join(lines)
