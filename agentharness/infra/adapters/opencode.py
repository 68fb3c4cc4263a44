"""OpenCode ``run --format json`` adapter."""

from __future__ import annotations

import json

from agentharness.infra.adapters.base import JsonLinesAdapter, as_float, as_int, as_str, dig, usage_or_none
from agentharness.models.backend import BackendKind
from agentharness.models.event import (
    Error,
    ErrorKind,
    Event,
    Message,
    Result,
    SessionStart,
    TextDelta,
    ToolEnd,
    ToolStart,
    UsageData,
    UsageDelta,
)


def parse_usage(part: dict) -> UsageData | None:
    tokens = part.get("tokens")
    if not isinstance(tokens, dict):
        tokens = {}
    return usage_or_none(
        UsageData(
            input_tokens=as_int(tokens.get("input")),
            output_tokens=as_int(tokens.get("output")),
            cache_read_tokens=as_int(dig(tokens, "cache", "read")),
            cache_creation_tokens=as_int(dig(tokens, "cache", "write")),
            cost_usd=as_float(part.get("cost")),
        )
    )


class OpenCodeAdapter(JsonLinesAdapter):
    """Maps OpenCode step/part records, plus the older flat record types.

    OpenCode interleaves plain progress text with its JSON; lines that do
    not look like JSON objects become text deltas.
    """

    backend = BackendKind.OPENCODE

    def __init__(self) -> None:
        super().__init__()
        self._started = False

    def on_invalid_line(self, line: str, final: bool, error: json.JSONDecodeError) -> list[Event]:
        if not line.startswith("{"):
            return [TextDelta(text=line)]
        return super().on_invalid_line(line, final, error)

    def parse_record(self, record: dict) -> list[Event]:
        kind = record.get("type")
        part = record.get("part") if isinstance(record.get("part"), dict) else {}

        if kind == "step_start":
            # Every step starts with one; only the first opens the session.
            return self._session_start(as_str(record.get("sessionID")) or "")
        if kind == "text":
            text = as_str(part.get("text"))
            return [Message(role="assistant", text=text)] if text else []
        if kind == "tool_use":
            return self._on_tool_use(part) if part else []
        if kind == "step_finish":
            return self._on_step_finish(record, part) if part else []

        if kind in ("session.start", "session.init", "init"):
            session_id = as_str(record.get("session_id")) or as_str(record.get("id")) or ""
            return self._session_start(session_id, as_str(record.get("model")), as_str(record.get("cwd")))
        if kind in ("message", "assistant"):
            text = as_str(record.get("content")) or as_str(record.get("text"))
            return [Message(role="assistant", text=text)] if text else []
        if kind == "error":
            message = as_str(record.get("message")) or as_str(record.get("error")) or "unknown error"
            return [Error(kind=ErrorKind.BACKEND_ERROR, message=message, code=as_str(record.get("code")))]
        if kind in ("result", "done", "complete"):
            success = record.get("success", True)
            return [
                Result(
                    success=success if isinstance(success, bool) else True,
                    text=as_str(record.get("result")) or as_str(record.get("content")) or as_str(record.get("text")),
                    session_id=as_str(record.get("session_id")) or "",
                    duration_ms=as_int(record.get("duration_ms")),
                )
            ]
        return self.ignore(kind)

    def _session_start(self, session_id: str, model: str | None = None, cwd: str | None = None) -> list[Event]:
        if self._started:
            return []
        self._started = True
        return [SessionStart(session_id=session_id, backend=self.backend.value, model=model, cwd=cwd)]

    def _on_tool_use(self, part: dict) -> list[Event]:
        call_id = as_str(part.get("callID")) or ""
        name = as_str(part.get("tool")) or "unknown"
        state = part.get("state") if isinstance(part.get("state"), dict) else {}
        status = state.get("status", "completed")
        self.remember_tool(call_id, name)
        return [
            ToolStart(call_id=call_id, tool_name=name, input=state.get("input", {})),
            ToolEnd(
                call_id=call_id,
                tool_name=name,
                success=status == "completed",
                output=state.get("output", state.get("error")),
            ),
        ]

    def _on_step_finish(self, record: dict, part: dict) -> list[Event]:
        usage = parse_usage(part)
        events: list[Event] = []
        if usage is not None:
            events.append(UsageDelta(usage=usage))
        # "tool-calls" means another step follows; "stop" is the final step.
        # Cost and usage are per step, so totals come from the summed deltas.
        if part.get("reason") == "stop":
            events.append(Result(success=True, session_id=as_str(record.get("sessionID")) or ""))
        return events
