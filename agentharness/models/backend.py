"""Backend domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from agentharness.errors import UnknownBackend


class BackendKind(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"
    CURSOR = "cursor"

    @classmethod
    def parse(cls, value: BackendKind | str) -> BackendKind:
        """Parse a backend name, accepting the common spellings users type."""
        if isinstance(value, BackendKind):
            return value
        key = value.strip().lower()
        kind = _BACKEND_ALIASES.get(key)
        if kind is None:
            raise UnknownBackend(value)
        return kind


_BACKEND_ALIASES: dict[str, BackendKind] = {
    "claude": BackendKind.CLAUDE,
    "claude-code": BackendKind.CLAUDE,
    "claude_code": BackendKind.CLAUDE,
    "claudecode": BackendKind.CLAUDE,
    "codex": BackendKind.CODEX,
    "openai-codex": BackendKind.CODEX,
    "openai_codex": BackendKind.CODEX,
    "opencode": BackendKind.OPENCODE,
    "open-code": BackendKind.OPENCODE,
    "open_code": BackendKind.OPENCODE,
    "cursor": BackendKind.CURSOR,
    "cursor-agent": BackendKind.CURSOR,
    "cursor_agent": BackendKind.CURSOR,
}


class PermissionMode(str, Enum):
    FULL_ACCESS = "full_access"
    READ_ONLY = "read_only"

    @classmethod
    def parse(cls, value: PermissionMode | str | None) -> PermissionMode:
        if value is None or value == "":
            return cls.FULL_ACCESS
        if isinstance(value, PermissionMode):
            return value
        key = value.strip().lower().replace("_", "-")
        if key in ("full-access", "full", "yolo", "default"):
            return cls.FULL_ACCESS
        if key in ("read-only", "readonly", "plan"):
            return cls.READ_ONLY
        raise ValueError(f"Unknown permission mode: {value!r} (expected full-access or read-only)")


@dataclass(frozen=True)
class Capabilities:
    """What a backend CLI supports beyond the basics."""

    accepts_stdin_prompt: bool = False
    reports_tool_events: bool = True
    streams_text_deltas: bool = False
    supports_model: bool = True
    supports_system_prompt: bool = False
    supports_append_system_prompt: bool = False
    supports_max_turns: bool = False
    supports_budget: bool = False

    def to_dict(self) -> dict:
        return {
            "accepts_stdin_prompt": self.accepts_stdin_prompt,
            "reports_tool_events": self.reports_tool_events,
            "streams_text_deltas": self.streams_text_deltas,
            "supports_model": self.supports_model,
            "supports_system_prompt": self.supports_system_prompt,
            "supports_append_system_prompt": self.supports_append_system_prompt,
            "supports_max_turns": self.supports_max_turns,
            "supports_budget": self.supports_budget,
        }


@dataclass(frozen=True)
class BackendSpec:
    """Static description of one backend CLI.

    The flag tables here are the only place backend-specific argv
    spelling lives; the command resolver just concatenates them.
    """

    kind: BackendKind
    display_name: str
    binary_candidates: tuple[str, ...]
    native_format: str
    capabilities: Capabilities = field(default_factory=Capabilities)
    required_args: tuple[str, ...] = ()
    model_flag: str = "--model"
    permission_args: dict[PermissionMode, tuple[str, ...]] = field(default_factory=dict)
    api_key_env_vars: tuple[str, ...] = ()

    @property
    def default_binary(self) -> str:
        return self.binary_candidates[0]

    def permission_flags(self, mode: PermissionMode) -> tuple[str, ...]:
        return self.permission_args.get(mode, ())
