"""Model alias resolution over layered registries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from agentharness.config import HarnessConfig
from agentharness.errors import ModelUnsupportedForBackend, UnknownAlias
from agentharness.infra.registry_store import RegistryCache, RegistryStore
from agentharness.models.backend import BackendKind
from agentharness.models.model_entry import (
    ModelEntry,
    backend_overrides_layer,
    builtin_models,
    merge_layers,
)

logger = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    NO_MAPPING = "no_mapping"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class ModelResolution:
    """Outcome of looking a model name up for one backend."""

    name: str
    status: ResolutionStatus
    model_id: str | None = None
    layer: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status.value,
            "model_id": self.model_id,
            "layer": self.layer,
        }


class ModelRegistryResolver:
    """Resolves aliases through five layers, highest precedence first:

    1. per-run overrides passed by the caller
    2. the project config's per-agent ``[agents.<name>.models]`` table
    3. the project config's ``[models.<alias>]`` entries
    4. the cached registry file
    5. the built-in table

    Layers are re-read on every call, so a concurrent ``update`` is picked
    up by the next resolution without any locking.
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        store: RegistryStore | None = None,
        run_overrides: dict[str, ModelEntry] | None = None,
        builtins: dict[str, ModelEntry] | None = None,
    ) -> None:
        self._config = config or HarnessConfig()
        self._store = store or RegistryStore(
            self._config.registry.resolved_cache_path, url=self._config.registry.url
        )
        self._run_overrides = dict(run_overrides or {})
        self._builtins = builtins if builtins is not None else builtin_models()

    @property
    def store(self) -> RegistryStore:
        return self._store

    def _layers(self, backend: BackendKind) -> list[tuple[str, dict[str, ModelEntry]]]:
        agent_models = self._config.agent(backend).models
        return [
            ("run", self._run_overrides),
            ("project-agent", backend_overrides_layer(agent_models, backend)),
            ("project", self._config.models),
            ("cache", self._store.load().models),
            ("builtin", self._builtins),
        ]

    def resolve(self, name: str, backend: BackendKind | str) -> ModelResolution:
        """Non-raising lookup used for display and passthrough decisions."""
        kind = BackendKind.parse(backend)
        seen = False
        for layer_name, layer in self._layers(kind):
            entry = layer.get(name)
            if entry is None:
                continue
            seen = True
            model_id = entry.backend_model(kind)
            if model_id:
                logger.debug("Resolved %s for %s via %s layer: %s", name, kind.value, layer_name, model_id)
                return ModelResolution(name, ResolutionStatus.RESOLVED, model_id, layer_name)
        if seen:
            return ModelResolution(name, ResolutionStatus.NO_MAPPING)
        return ModelResolution(name, ResolutionStatus.PASSTHROUGH, model_id=name)

    def resolve_alias(self, alias: str, backend: BackendKind | str) -> str:
        """Return the backend's native model id for an alias.

        Raises UnknownAlias when no layer defines the alias, and
        ModelUnsupportedForBackend when layers define it but none maps it
        for this backend.
        """
        resolution = self.resolve(alias, backend)
        if resolution.status is ResolutionStatus.RESOLVED:
            return resolution.model_id  # type: ignore[return-value]
        if resolution.status is ResolutionStatus.NO_MAPPING:
            raise ModelUnsupportedForBackend(alias, BackendKind.parse(backend).value)
        raise UnknownAlias(alias)

    def list(self, backend: BackendKind | str | None = None) -> list[ModelEntry]:
        """All aliases merged field by field across layers, sorted by alias."""
        agent_layers = [
            backend_overrides_layer(settings.models, name)
            for name, settings in sorted(self._config.agents.items())
        ]
        merged = merge_layers(
            self._builtins,
            self._store.load().models,
            self._config.models,
            *agent_layers,
            self._run_overrides,
        )
        entries = list(merged.values())
        if backend is not None:
            kind = BackendKind.parse(backend)
            entries = [e for e in entries if e.backend_model(kind)]
        return entries

    async def update(self) -> RegistryCache:
        """Refresh the cached registry from the remote source."""
        return await self._store.update()
