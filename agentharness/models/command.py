"""Resolved command domain model."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field

from agentharness.models.backend import BackendKind


@dataclass(frozen=True)
class ResolvedCommand:
    """Everything needed to launch one backend process.

    Built once by the command resolver and never mutated afterwards.
    """

    backend: BackendKind
    executable: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    stdin_payload: str | None = None
    cwd: str | None = None
    model: str | None = None
    prompt: str = ""

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def full_command(self) -> str:
        """Return the full command string for shell execution."""
        return " ".join(shlex.quote(p) for p in self.argv)

    def to_dict(self) -> dict:
        return {
            "backend": self.backend.value,
            "executable": self.executable,
            "args": list(self.args),
            "env": dict(sorted(self.env.items())),
            "stdin": self.stdin_payload is not None,
            "cwd": self.cwd,
            "model": self.model,
        }
