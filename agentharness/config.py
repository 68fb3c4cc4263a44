"""Configuration loading: global TOML + project TOML + environment overlay."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

from agentharness.errors import UnknownBackend
from agentharness.models.backend import BackendKind
from agentharness.models.model_entry import ModelEntry, merge_entry, parse_models_table

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agentharness"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"
PROJECT_CONFIG_NAME = "agentharness.toml"
DEFAULT_REGISTRY_URL = "https://raw.githubusercontent.com/ayshptk/harness/main/models.toml"
DEFAULT_REGISTRY_TTL_SECS = 24 * 60 * 60


def _default_home() -> Path:
    """Return the state directory, honouring AGENTHARNESS_HOME."""
    home = os.environ.get("AGENTHARNESS_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".agentharness"


def _default_session_dir() -> Path:
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "agentharness" / "sessions"
    return Path.home() / ".local" / "share" / "agentharness" / "sessions"


DEFAULT_CONFIG_TOML = """\
# agentharness configuration.
#
# Placed in a project directory as agentharness.toml, or globally at
# ~/.config/agentharness/config.toml. Project values win over global ones.

# default_agent = "claude"
# default_model = "sonnet"
# default_permissions = "full-access"
# default_timeout_secs = 600
# log_level = "warning"
# session_log = false

# [agents.claude]
# binary = "/usr/local/bin/claude"
# model = "opus"
# extra_args = ["--max-turns", "20"]

# [agents.claude.models]
# sonnet = "claude-sonnet-4-5-20250929"

# [models.my-model]
# description = "My custom model"
# provider = "anthropic"
# claude = "claude-custom-id"

[registry]
# url = "https://raw.githubusercontent.com/ayshptk/harness/main/models.toml"
# cache_path = "~/.agentharness/models.toml"
# ttl_secs = 86400
"""


@dataclass
class AgentSettings:
    binary: str = ""
    model: str = ""
    extra_args: list[str] = field(default_factory=list)
    models: dict[str, str] = field(default_factory=dict)


@dataclass
class RegistryConfig:
    url: str = DEFAULT_REGISTRY_URL
    cache_path: str = ""
    ttl_secs: int = DEFAULT_REGISTRY_TTL_SECS

    @property
    def resolved_cache_path(self) -> Path:
        if self.cache_path:
            return Path(self.cache_path).expanduser()
        return _default_home() / "models.toml"


@dataclass
class HarnessConfig:
    default_agent: str = ""
    default_model: str = ""
    default_permissions: str = ""
    default_timeout_secs: float | None = None
    log_level: str = ""
    session_log: bool = False
    session_dir: str = ""
    agents: dict[str, AgentSettings] = field(default_factory=dict)
    models: dict[str, ModelEntry] = field(default_factory=dict)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    config_path: Path = DEFAULT_CONFIG_PATH
    project_path: Path | None = None

    def agent(self, backend: BackendKind | str) -> AgentSettings:
        """Return settings for a backend, or empty settings if none are configured."""
        key = BackendKind.parse(backend).value
        return self.agents.get(key, AgentSettings())

    @property
    def resolved_session_dir(self) -> Path:
        if self.session_dir:
            return Path(self.session_dir).expanduser()
        return _default_session_dir()


def find_project_config(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` looking for agentharness.toml."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    return None


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}


def _table(raw: dict, key: str, where: str = "") -> dict:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        logger.warning("Ignoring %s%s: expected a table, got %r", where, key, value)
        return {}
    return value


def _parse_agent(data: dict) -> AgentSettings:
    extra_args = data.get("extra_args", [])
    if not isinstance(extra_args, list):
        logger.warning("Ignoring extra_args: expected a list, got %r", extra_args)
        extra_args = []
    return AgentSettings(
        binary=data.get("binary", ""),
        model=data.get("model", ""),
        extra_args=[str(a) for a in extra_args],
        models={str(k): str(v) for k, v in _table(data, "models", "agent ").items()},
    )


def _parse_agents(raw: dict) -> dict[str, AgentSettings]:
    agents: dict[str, AgentSettings] = {}
    for name, data in raw.items():
        try:
            key = BackendKind.parse(name).value
        except UnknownBackend:
            logger.warning("Ignoring settings for unknown agent %r", name)
            continue
        if not isinstance(data, dict):
            logger.warning("Ignoring settings for agent %r: expected a table, got %r", name, data)
            continue
        agents[key] = _parse_agent(data)
    return agents


def _parse_timeout(value) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        logger.warning("Ignoring invalid default_timeout_secs: %r", value)
        return None
    return float(value)


def parse_config(raw: dict) -> HarnessConfig:
    """Build a HarnessConfig from an already-parsed TOML document."""
    registry_raw = _table(raw, "registry")
    try:
        models = parse_models_table(raw.get("models", {}))
    except ValueError as e:
        logger.warning("Ignoring invalid [models] section: %s", e)
        models = {}
    return HarnessConfig(
        default_agent=raw.get("default_agent", ""),
        default_model=raw.get("default_model", ""),
        default_permissions=raw.get("default_permissions", ""),
        default_timeout_secs=_parse_timeout(raw.get("default_timeout_secs")),
        log_level=raw.get("log_level", ""),
        session_log=bool(raw.get("session_log", False)),
        session_dir=raw.get("session_dir", ""),
        agents=_parse_agents(_table(raw, "agents")),
        models=models,
        registry=RegistryConfig(
            url=registry_raw.get("url", DEFAULT_REGISTRY_URL),
            cache_path=registry_raw.get("cache_path", ""),
            ttl_secs=registry_raw.get("ttl_secs", DEFAULT_REGISTRY_TTL_SECS),
        ),
    )


def merge_configs(base: HarnessConfig, override: HarnessConfig) -> HarnessConfig:
    """Overlay a project config onto the global one.

    Scalars set in ``override`` win. Per-agent extra_args are concatenated
    (global first) and per-agent model overrides merge key by key.
    """
    agents = dict(base.agents)
    for name, settings in override.agents.items():
        lower = agents.get(name)
        if lower is None:
            agents[name] = settings
            continue
        agents[name] = AgentSettings(
            binary=settings.binary or lower.binary,
            model=settings.model or lower.model,
            extra_args=[*lower.extra_args, *settings.extra_args],
            models={**lower.models, **settings.models},
        )

    models = dict(base.models)
    for name, entry in override.models.items():
        models[name] = merge_entry(models[name], entry) if name in models else entry

    registry = RegistryConfig(
        url=override.registry.url if override.registry.url != DEFAULT_REGISTRY_URL else base.registry.url,
        cache_path=override.registry.cache_path or base.registry.cache_path,
        ttl_secs=(
            override.registry.ttl_secs
            if override.registry.ttl_secs != DEFAULT_REGISTRY_TTL_SECS
            else base.registry.ttl_secs
        ),
    )

    return HarnessConfig(
        default_agent=override.default_agent or base.default_agent,
        default_model=override.default_model or base.default_model,
        default_permissions=override.default_permissions or base.default_permissions,
        default_timeout_secs=override.default_timeout_secs or base.default_timeout_secs,
        log_level=override.log_level or base.log_level,
        session_log=override.session_log or base.session_log,
        session_dir=override.session_dir or base.session_dir,
        agents=agents,
        models=models,
        registry=registry,
        config_path=base.config_path,
        project_path=override.project_path,
    )


def _env_overlay(config: HarnessConfig) -> None:
    """Override config values with environment variables where applicable."""
    if level := os.environ.get("AGENTHARNESS_LOG_LEVEL"):
        config.log_level = level
    if url := os.environ.get("AGENTHARNESS_REGISTRY_URL"):
        config.registry.url = url


def load_config(config_path: Path | None = None, cwd: Path | None = None) -> HarnessConfig:
    """Load the global config, overlay the nearest project config, then the environment."""
    env_path = os.environ.get("AGENTHARNESS_CONFIG")
    path = config_path or (Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH)

    config = parse_config(_read_toml(path)) if path.exists() else HarnessConfig()
    config.config_path = path

    project_path = find_project_config(cwd)
    if project_path is not None and project_path != path:
        project = parse_config(_read_toml(project_path))
        project.project_path = project_path
        config = merge_configs(config, project)

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create a commented config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
