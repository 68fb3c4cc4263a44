"""Adapter factory/registry."""

from __future__ import annotations

from agentharness.infra.adapters.base import JsonLinesAdapter
from agentharness.infra.adapters.claude import ClaudeAdapter
from agentharness.infra.adapters.codex import CodexAdapter
from agentharness.infra.adapters.cursor import CursorAdapter
from agentharness.infra.adapters.opencode import OpenCodeAdapter
from agentharness.models.backend import BackendKind

_ADAPTERS: dict[BackendKind, type[JsonLinesAdapter]] = {
    BackendKind.CLAUDE: ClaudeAdapter,
    BackendKind.CODEX: CodexAdapter,
    BackendKind.OPENCODE: OpenCodeAdapter,
    BackendKind.CURSOR: CursorAdapter,
}


def get_adapter(backend: BackendKind | str) -> JsonLinesAdapter:
    """Return a fresh adapter; adapters hold per-run state and are never shared."""
    return _ADAPTERS[BackendKind.parse(backend)]()
