"""Error taxonomy shared by the resolver, launcher, adapters and registry.

Every error carries a stable ``code`` so that scripts driving the CLI can
match on it without parsing messages.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all agentharness errors."""

    code = "E999"

    def __str__(self) -> str:
        return f"[{self.code}] {super().__str__()}"


class UnknownBackend(HarnessError, ValueError):
    code = "E001"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Unknown backend: {name!r} "
            "(expected one of: claude, codex, opencode, cursor)"
        )


class ProcessSpawnFailed(HarnessError, RuntimeError):
    code = "E002"

    def __init__(self, executable: str, reason: str) -> None:
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to spawn {executable!r}: {reason}")


class MalformedOutput(HarnessError, ValueError):
    code = "E004"


class ProcessTimeout(HarnessError, RuntimeError):
    code = "E005"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Process timed out after {timeout:.1f}s and was killed")


class InvalidWorkDir(HarnessError, ValueError):
    code = "E006"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Working directory does not exist or is not a directory: {path}")


class RegistryFetchFailed(HarnessError, RuntimeError):
    code = "E011"


class UnknownAlias(HarnessError, LookupError):
    code = "E012"

    def __init__(self, alias: str) -> None:
        self.alias = alias
        super().__init__(f"Unknown model alias: {alias!r}")


class ModelUnsupportedForBackend(HarnessError, LookupError):
    code = "E013"

    def __init__(self, alias: str, backend: str) -> None:
        self.alias = alias
        self.backend = backend
        super().__init__(f"Model {alias!r} has no mapping for backend {backend!r}")
