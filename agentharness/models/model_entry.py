"""Model alias domain models and the pure layer-merge logic.

Nothing here touches the filesystem or network; the registry store and the
resolver service feed already-parsed layers through these functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

from agentharness.models.backend import BackendKind

BACKEND_KEYS: tuple[str, ...] = tuple(kind.value for kind in BackendKind)

BUILTIN_MODELS_TOML = """\
[models.opus]
description = "Claude Opus 4.6"
provider = "anthropic"
claude = "claude-opus-4-6"
opencode = "anthropic/claude-opus-4-6"
cursor = "claude-opus-4-6"

[models.sonnet]
description = "Claude Sonnet 4.5"
provider = "anthropic"
claude = "claude-sonnet-4-5"
opencode = "anthropic/claude-sonnet-4-5"
cursor = "claude-sonnet-4-5"

[models.haiku]
description = "Claude Haiku 4.5"
provider = "anthropic"
claude = "claude-haiku-4-5"
opencode = "anthropic/claude-haiku-4-5"

[models.gpt-5]
description = "GPT-5"
provider = "openai"
codex = "gpt-5"
opencode = "openai/gpt-5"
cursor = "gpt-5"

[models.gpt-5-codex]
description = "GPT-5 Codex"
provider = "openai"
codex = "gpt-5-codex"
opencode = "openai/gpt-5-codex"
"""


@dataclass(frozen=True)
class ModelEntry:
    """One alias and its per-backend native model ids."""

    name: str
    description: str = ""
    provider: str = ""
    backends: dict[str, str] = field(default_factory=dict)

    def backend_model(self, backend: BackendKind | str) -> str | None:
        key = backend.value if isinstance(backend, BackendKind) else backend
        return self.backends.get(key) or None

    def to_table(self) -> dict:
        table: dict = {}
        if self.description:
            table["description"] = self.description
        if self.provider:
            table["provider"] = self.provider
        for key in BACKEND_KEYS:
            if key in self.backends:
                table[key] = self.backends[key]
        return table

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "provider": self.provider,
            "backends": dict(self.backends),
        }

    @classmethod
    def from_table(cls, name: str, table: dict) -> ModelEntry:
        """Build an entry from a ``[models.<name>]`` table.

        Raises ValueError when the table or any known field has the wrong type.
        """
        if not isinstance(table, dict):
            raise ValueError(f"models.{name} must be a table")
        for key in ("description", "provider", *BACKEND_KEYS):
            if key in table and not isinstance(table[key], str):
                raise ValueError(f"models.{name}.{key} must be a string")
        return cls(
            name=name,
            description=table.get("description", ""),
            provider=table.get("provider", ""),
            backends={k: table[k] for k in BACKEND_KEYS if table.get(k)},
        )


def parse_models_table(raw: dict) -> dict[str, ModelEntry]:
    """Parse the ``models`` table of a registry or config document."""
    if not isinstance(raw, dict):
        raise ValueError("'models' must be a table")
    return {name: ModelEntry.from_table(name, table) for name, table in raw.items()}


def parse_models_toml(text: str) -> dict[str, ModelEntry]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML: {e}") from e
    return parse_models_table(data.get("models", {}))


def builtin_models() -> dict[str, ModelEntry]:
    return parse_models_toml(BUILTIN_MODELS_TOML)


def merge_entry(lower: ModelEntry, higher: ModelEntry) -> ModelEntry:
    """Overlay ``higher`` onto ``lower`` field by field.

    Empty fields in ``higher`` never blank out a value from ``lower``; the
    backend map merges key by key.
    """
    return ModelEntry(
        name=higher.name,
        description=higher.description or lower.description,
        provider=higher.provider or lower.provider,
        backends={**lower.backends, **higher.backends},
    )


def merge_layers(*layers: dict[str, ModelEntry]) -> dict[str, ModelEntry]:
    """Merge layers given lowest precedence first, keyed by alias."""
    merged: dict[str, ModelEntry] = {}
    for layer in layers:
        for name, entry in layer.items():
            merged[name] = merge_entry(merged[name], entry) if name in merged else entry
    return dict(sorted(merged.items()))


def backend_overrides_layer(
    overrides: dict[str, str], backend: BackendKind | str
) -> dict[str, ModelEntry]:
    """Turn ``{alias: native_id}`` for one backend into a registry layer."""
    key = backend.value if isinstance(backend, BackendKind) else backend
    return {alias: ModelEntry(name=alias, backends={key: model_id}) for alias, model_id in overrides.items()}
