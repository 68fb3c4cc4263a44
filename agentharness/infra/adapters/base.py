"""Shared NDJSON framing for protocol adapters."""

from __future__ import annotations

import json
import logging
import math
from typing import ClassVar, Protocol, runtime_checkable

from agentharness.errors import MalformedOutput
from agentharness.models.backend import BackendKind
from agentharness.models.event import Error, ErrorKind, Event, UsageData

logger = logging.getLogger(__name__)


@runtime_checkable
class ProtocolAdapter(Protocol):
    """Translates one backend's raw stdout into canonical events.

    ``feed`` may be called with arbitrary byte chunks; ``finish`` is called
    once after the output pipe closes to flush a trailing partial record.
    """

    def feed(self, chunk: bytes) -> list[Event]:
        ...

    def finish(self) -> list[Event]:
        ...


class JsonLinesAdapter:
    """Reassembles newline-delimited JSON records from byte chunks.

    Subclasses implement ``parse_record`` for one decoded JSON object.
    """

    backend: ClassVar[BackendKind]

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._terminated = False
        self._finished = False
        self._tool_names: dict[str, str] = {}

    @property
    def terminated(self) -> bool:
        return self._terminated

    def feed(self, chunk: bytes) -> list[Event]:
        if self._terminated or self._finished:
            return []
        self._buffer.extend(chunk)
        events: list[Event] = []
        while not self._terminated:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            events.extend(self._process_raw(raw, final=False))
        return events

    def finish(self) -> list[Event]:
        if self._terminated or self._finished:
            return []
        self._finished = True
        raw = bytes(self._buffer)
        self._buffer.clear()
        if not raw.strip():
            return []
        return self._process_raw(raw, final=True)

    def parse_record(self, record: dict) -> list[Event]:
        raise NotImplementedError

    def _process_raw(self, raw: bytes, final: bool) -> list[Event]:
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            # Nothing after a bad byte sequence can be trusted.
            self._terminated = True
            self._buffer.clear()
            logger.warning("Invalid UTF-8 from %s; stopping adapter", self.backend.value)
            return [self._malformed(f"Invalid UTF-8 in {self.backend.value} output: {e}")]

        line = line.strip()
        if not line:
            return []
        try:
            value = json.loads(line, parse_constant=_reject_constant, parse_float=_finite_float)
        except json.JSONDecodeError as e:
            return self.on_invalid_line(line, final, e)
        except ValueError as e:
            return [self._malformed(f"Invalid JSON from {self.backend.value}: {e}: {_excerpt(line)}")]
        if not isinstance(value, dict):
            logger.debug("Ignoring non-object record from %s: %.80s", self.backend.value, line)
            return []
        try:
            return self.parse_record(value)
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug("Unusable %s record: %s", self.backend.value, e)
            return [self._malformed(f"Unusable {self.backend.value} record: {e}: {_excerpt(line)}")]

    def on_invalid_line(self, line: str, final: bool, error: json.JSONDecodeError) -> list[Event]:
        if final:
            message = f"Truncated {self.backend.value} record at end of output: {_excerpt(line)}"
        else:
            message = f"Invalid JSON from {self.backend.value}: {error.msg}: {_excerpt(line)}"
        logger.debug(message)
        return [self._malformed(message)]

    def ignore(self, kind) -> list[Event]:
        logger.debug("Ignoring %s record type %r", self.backend.value, kind)
        return []

    @staticmethod
    def _malformed(message: str) -> Error:
        return Error(kind=ErrorKind.MALFORMED_OUTPUT, message=message, code=MalformedOutput.code)

    def remember_tool(self, call_id: str, name: str) -> None:
        if call_id:
            self._tool_names[call_id] = name

    def tool_name(self, call_id: str, default: str = "unknown") -> str:
        return self._tool_names.get(call_id, default)


def _excerpt(line: str, limit: int = 120) -> str:
    return line if len(line) <= limit else line[:limit] + "..."


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range {text}")
    return value


def dig(value, *path):
    """Walk nested dicts, returning None as soon as a key is missing."""
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def as_str(value) -> str | None:
    return value if isinstance(value, str) else None


def as_int(value) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def as_float(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def usage_or_none(usage: UsageData) -> UsageData | None:
    return None if usage.is_empty else usage


def joined_text(blocks, block_type: str | None = "text") -> str:
    """Concatenate the ``text`` of content blocks, optionally filtered by type."""
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""
    parts = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        if block_type is not None and block.get("type") != block_type:
            continue
        text = block.get("text")
        if isinstance(text, str):
            parts.append(text)
    return "".join(parts)
