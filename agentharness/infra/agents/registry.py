"""Backend registry: the static table of supported agent CLIs."""

from __future__ import annotations

import logging
import shutil
import subprocess

from agentharness.models.backend import BackendKind, BackendSpec, Capabilities, PermissionMode

logger = logging.getLogger(__name__)

_FULL = PermissionMode.FULL_ACCESS
_READ = PermissionMode.READ_ONLY

_BACKENDS: dict[BackendKind, BackendSpec] = {
    BackendKind.CLAUDE: BackendSpec(
        kind=BackendKind.CLAUDE,
        display_name="Claude Code",
        binary_candidates=("claude",),
        native_format="claude-stream-json",
        capabilities=Capabilities(
            accepts_stdin_prompt=True,
            streams_text_deltas=True,
            supports_system_prompt=True,
            supports_append_system_prompt=True,
            supports_max_turns=True,
            supports_budget=True,
        ),
        required_args=("-p", "--output-format", "stream-json", "--verbose", "--include-partial-messages"),
        permission_args={
            _FULL: ("--dangerously-skip-permissions",),
            _READ: ("--permission-mode", "plan"),
        },
        api_key_env_vars=("ANTHROPIC_API_KEY",),
    ),
    BackendKind.CODEX: BackendSpec(
        kind=BackendKind.CODEX,
        display_name="Codex",
        binary_candidates=("codex",),
        native_format="codex-exec-jsonl",
        required_args=("exec", "--json"),
        permission_args={
            _FULL: ("--sandbox", "danger-full-access", "--dangerously-bypass-approvals-and-sandbox"),
            _READ: ("--sandbox", "read-only"),
        },
        api_key_env_vars=("OPENAI_API_KEY",),
    ),
    BackendKind.OPENCODE: BackendSpec(
        kind=BackendKind.OPENCODE,
        display_name="OpenCode",
        binary_candidates=("opencode",),
        native_format="opencode-run-json",
        capabilities=Capabilities(streams_text_deltas=True),
        required_args=("run", "--format", "json"),
        permission_args={
            _FULL: (),
            _READ: ("--agent", "plan"),
        },
        api_key_env_vars=("ANTHROPIC_API_KEY", "OPENAI_API_KEY"),
    ),
    BackendKind.CURSOR: BackendSpec(
        kind=BackendKind.CURSOR,
        display_name="Cursor",
        binary_candidates=("cursor-agent", "agent"),
        native_format="cursor-stream-json",
        required_args=("-p", "--output-format", "stream-json"),
        permission_args={
            _FULL: ("--force",),
            _READ: ("--mode", "plan"),
        },
        api_key_env_vars=("CURSOR_API_KEY",),
    ),
}


def describe(backend: BackendKind | str) -> BackendSpec:
    """Look up a backend spec. Raises UnknownBackend for unsupported names."""
    return _BACKENDS[BackendKind.parse(backend)]


def all_backends() -> list[BackendSpec]:
    return list(_BACKENDS.values())


def find_binary(spec: BackendSpec) -> str | None:
    """Return the first of the backend's binary candidates found on PATH."""
    for candidate in spec.binary_candidates:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def available_backends() -> list[BackendSpec]:
    return [spec for spec in all_backends() if find_binary(spec) is not None]


def binary_version(path: str, timeout: float = 5.0) -> str | None:
    """Run ``<binary> --version`` and return its first output line."""
    try:
        proc = subprocess.run(
            [path, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Version probe for %s failed: %s", path, e)
        return None
    output = (proc.stdout or proc.stderr).strip()
    return output.splitlines()[0] if output else None
