"""On-disk model registry cache and its remote refresh."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import httpx
import tomli_w

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

from agentharness.config import DEFAULT_REGISTRY_URL
from agentharness.errors import RegistryFetchFailed
from agentharness.models.model_entry import ModelEntry, parse_models_table, parse_models_toml

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECS = 5.0


@dataclass(frozen=True)
class RegistryCache:
    """Snapshot of the cached registry file."""

    path: Path
    models: dict[str, ModelEntry] = field(default_factory=dict)
    updated_at: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.updated_at is not None or bool(self.models)


def _parse_timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class RegistryStore:
    """Reads the cached registry and replaces it atomically on refresh."""

    def __init__(
        self,
        path: Path,
        url: str = DEFAULT_REGISTRY_URL,
        timeout: float = FETCH_TIMEOUT_SECS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.path = path
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def load(self) -> RegistryCache:
        """Read the cache. A missing or corrupt file reads as empty."""
        if not self.path.exists():
            return RegistryCache(path=self.path)
        try:
            with open(self.path, "rb") as f:
                raw = tomllib.load(f)
            models = parse_models_table(raw.get("models", {}))
        except (OSError, tomllib.TOMLDecodeError, ValueError) as e:
            logger.warning("Ignoring unreadable model registry cache %s: %s", self.path, e)
            return RegistryCache(path=self.path)
        return RegistryCache(
            path=self.path,
            models=models,
            updated_at=_parse_timestamp(raw.get("updated_at")),
        )

    def is_stale(self, ttl_secs: float) -> bool:
        cache = self.load()
        if cache.updated_at is None:
            return True
        age = datetime.now(timezone.utc) - cache.updated_at
        return age.total_seconds() > ttl_secs

    def write(self, models: dict[str, ModelEntry], updated_at: datetime | None = None) -> RegistryCache:
        """Write the cache via a temp file in the same directory plus rename."""
        updated_at = updated_at or datetime.now(timezone.utc)
        doc = {
            "updated_at": updated_at.isoformat(),
            "models": {name: entry.to_table() for name, entry in sorted(models.items())},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(doc, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.info("Wrote %d models to %s", len(models), self.path)
        return RegistryCache(path=self.path, models=dict(models), updated_at=updated_at)

    async def fetch(self) -> dict[str, ModelEntry]:
        """Download and validate the remote registry."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(self.url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise RegistryFetchFailed(f"Failed to fetch model registry from {self.url}: {e}") from e

        try:
            models = parse_models_toml(response.text)
        except ValueError as e:
            raise RegistryFetchFailed(f"Remote model registry is malformed: {e}") from e
        if not models:
            raise RegistryFetchFailed("Remote model registry contains no models")
        return models

    async def update(self) -> RegistryCache:
        """Fetch the remote registry and replace the cache.

        On any failure the existing cache file is left untouched.
        """
        models = await self.fetch()
        try:
            return self.write(models)
        except OSError as e:
            raise RegistryFetchFailed(f"Could not write model registry cache {self.path}: {e}") from e
