"""Canonical event domain models.

Every backend's native output is translated into these eight event kinds.
They serialize to one flat JSON object each, with a ``type`` discriminator
and ``None`` fields omitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Union


class EventType(str, Enum):
    SESSION_START = "session_start"
    TEXT_DELTA = "text_delta"
    MESSAGE = "message"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    USAGE_DELTA = "usage_delta"
    RESULT = "result"
    ERROR = "error"


class ErrorKind(str, Enum):
    MALFORMED_OUTPUT = "malformed_output"
    BACKEND_ERROR = "backend_error"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"
    PROCESS_FAILED = "process_failed"


@dataclass(frozen=True)
class UsageData:
    """Token and cost counters. Any field may be unknown."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cost_usd: float | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def merged(self, other: UsageData) -> UsageData:
        """Return the field-wise sum; unknown stays unknown only if both are."""

        def add(a, b):
            if a is None:
                return b
            if b is None:
                return a
            return a + b

        return UsageData(
            input_tokens=add(self.input_tokens, other.input_tokens),
            output_tokens=add(self.output_tokens, other.output_tokens),
            cache_read_tokens=add(self.cache_read_tokens, other.cache_read_tokens),
            cache_creation_tokens=add(self.cache_creation_tokens, other.cache_creation_tokens),
            cost_usd=add(self.cost_usd, other.cost_usd),
        )

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_dict(cls, data: dict) -> UsageData:
        return cls(**{f.name: data.get(f.name) for f in fields(cls)})


class _EventBase:
    type: ClassVar[EventType]

    def to_dict(self) -> dict:
        d: dict = {"type": self.type.value}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, UsageData):
                value = value.to_dict()
            elif isinstance(value, Enum):
                value = value.value
            d[f.name] = value
        return d


@dataclass(frozen=True)
class SessionStart(_EventBase):
    type: ClassVar[EventType] = EventType.SESSION_START

    backend: str = ""
    model: str | None = None
    cwd: str | None = None
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class TextDelta(_EventBase):
    type: ClassVar[EventType] = EventType.TEXT_DELTA

    text: str = ""
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class Message(_EventBase):
    type: ClassVar[EventType] = EventType.MESSAGE

    role: str = "assistant"  # "assistant", "user", "system"
    text: str = ""
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class ToolStart(_EventBase):
    type: ClassVar[EventType] = EventType.TOOL_START

    call_id: str = ""
    tool_name: str = ""
    input: Any = field(default_factory=dict)
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class ToolEnd(_EventBase):
    type: ClassVar[EventType] = EventType.TOOL_END

    call_id: str = ""
    tool_name: str = ""
    success: bool = True
    output: Any = None
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class UsageDelta(_EventBase):
    type: ClassVar[EventType] = EventType.USAGE_DELTA

    usage: UsageData = field(default_factory=UsageData)
    total_cost_usd: float | None = None
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class Result(_EventBase):
    type: ClassVar[EventType] = EventType.RESULT

    success: bool = True
    exit_code: int | None = None
    duration_ms: int | None = None
    text: str | None = None
    total_cost_usd: float | None = None
    usage: UsageData | None = None
    session_id: str = ""
    timestamp_ms: int = 0


@dataclass(frozen=True)
class Error(_EventBase):
    type: ClassVar[EventType] = EventType.ERROR

    kind: ErrorKind = ErrorKind.BACKEND_ERROR
    message: str = ""
    code: str | None = None
    session_id: str = ""
    timestamp_ms: int = 0


Event = Union[SessionStart, TextDelta, Message, ToolStart, ToolEnd, UsageDelta, Result, Error]

_EVENT_CLASSES: dict[str, type] = {
    cls.type.value: cls
    for cls in (SessionStart, TextDelta, Message, ToolStart, ToolEnd, UsageDelta, Result, Error)
}


def event_from_dict(data: dict) -> Event:
    """Rebuild an event from its serialized form."""
    cls = _EVENT_CLASSES.get(data.get("type", ""))
    if cls is None:
        raise ValueError(f"Unknown event type: {data.get('type')!r}")
    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "usage" and isinstance(value, dict):
            value = UsageData.from_dict(value)
        elif f.name == "kind":
            value = ErrorKind(value)
        kwargs[f.name] = value
    return cls(**kwargs)


# --- aggregation helpers -------------------------------------------------


def sum_costs(events: list[Event]) -> float | None:
    """Total cost reported across a stream.

    Prefers the final Result's total when present; otherwise sums the
    per-delta costs. None when nothing in the stream reported a cost.
    """
    for event in reversed(events):
        if isinstance(event, Result) and event.total_cost_usd is not None:
            return event.total_cost_usd
    costs = [e.usage.cost_usd for e in events if isinstance(e, UsageDelta) and e.usage.cost_usd is not None]
    return sum(costs) if costs else None


def total_tokens(events: list[Event]) -> UsageData:
    """Sum every UsageDelta in a stream."""
    total = UsageData()
    for event in events:
        if isinstance(event, UsageDelta):
            total = total.merged(event.usage)
    return total


def extract_tool_calls(events: list[Event]) -> list[tuple[ToolStart, ToolEnd | None]]:
    """Pair each ToolStart with its ToolEnd (None if it never finished)."""
    ends = {e.call_id: e for e in events if isinstance(e, ToolEnd)}
    return [(e, ends.get(e.call_id)) for e in events if isinstance(e, ToolStart)]


def format_token_count(count: int | None) -> str:
    if count is None:
        return "-"
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}k"
    return str(count)
