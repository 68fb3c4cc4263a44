"""Codex ``exec --json`` adapter."""

from __future__ import annotations

import json

from agentharness.infra.adapters.base import JsonLinesAdapter, as_int, as_str, joined_text, usage_or_none
from agentharness.models.backend import BackendKind
from agentharness.models.event import (
    Error,
    ErrorKind,
    Event,
    Message,
    Result,
    SessionStart,
    ToolEnd,
    ToolStart,
    UsageData,
    UsageDelta,
)

_COMMAND_ITEMS = ("command_execution", "command", "shell")
_MESSAGE_ITEMS = ("agent_message", "message")


class CodexAdapter(JsonLinesAdapter):
    """Maps Codex thread/turn/item records.

    ``item.created`` is the older spelling of ``item.completed``. Reasoning
    items are internal and dropped.
    """

    backend = BackendKind.CODEX

    def parse_record(self, record: dict) -> list[Event]:
        kind = record.get("type")
        if kind == "thread.started":
            return [
                SessionStart(
                    session_id=as_str(record.get("thread_id")) or "",
                    backend=self.backend.value,
                    model=as_str(record.get("model")),
                )
            ]
        if kind == "item.started":
            return self._on_item_started(record.get("item"))
        if kind in ("item.completed", "item.created"):
            return self._on_item_completed(record.get("item"))
        if kind == "turn.completed":
            return self._on_turn_completed(record)
        if kind == "turn.failed":
            return [self._error(record.get("error") or record.get("message") or "turn failed", "turn_failed")]
        if kind == "thread.completed":
            return [
                Result(
                    success=True,
                    text=as_str(record.get("summary")) or as_str(record.get("result")),
                    session_id=as_str(record.get("thread_id")) or "",
                    duration_ms=as_int(record.get("duration_ms")),
                )
            ]
        if kind == "error":
            return [self._error(record.get("message") or "unknown error", as_str(record.get("code")))]
        return self.ignore(kind)

    def _on_item_started(self, item) -> list[Event]:
        if not isinstance(item, dict) or item.get("type") != "command_execution":
            return []
        call_id = as_str(item.get("id")) or "unknown"
        self.remember_tool(call_id, "shell")
        return [ToolStart(call_id=call_id, tool_name="shell", input={"command": item.get("command", "")})]

    def _on_item_completed(self, item) -> list[Event]:
        if not isinstance(item, dict):
            return []
        item_type = item.get("type")
        call_id = as_str(item.get("id")) or "unknown"

        if item_type in _MESSAGE_ITEMS:
            text = as_str(item.get("text")) or joined_text(item.get("content"), block_type=None)
            if not text:
                return []
            role = item.get("role") if item.get("role") in ("user", "system") else "assistant"
            return [Message(role=role, text=text)]

        if item_type in _COMMAND_ITEMS:
            exit_code = as_int(item.get("exit_code"))
            output = as_str(item.get("aggregated_output"))
            if output is None:
                output = as_str(item.get("output"))
            if output is None:
                output = json.dumps({"command": item.get("command", "")})
            return [
                ToolEnd(
                    call_id=call_id,
                    tool_name=self.tool_name(call_id, "shell"),
                    success=exit_code is None or exit_code == 0,
                    output=output,
                )
            ]

        if item_type == "file_change":
            tool_input = {"path": item["path"]} if "path" in item else {"changes": item.get("changes", [])}
            return [
                ToolStart(call_id=call_id, tool_name="file_change", input=tool_input),
                ToolEnd(call_id=call_id, tool_name="file_change", success=item.get("status") != "failed"),
            ]

        return self.ignore(item_type)

    def _on_turn_completed(self, record: dict) -> list[Event]:
        raw = record.get("usage")
        usage = None
        if isinstance(raw, dict):
            usage = usage_or_none(
                UsageData(
                    input_tokens=as_int(raw.get("input_tokens")),
                    output_tokens=as_int(raw.get("output_tokens")),
                    cache_read_tokens=as_int(raw.get("cached_input_tokens")),
                )
            )
        events: list[Event] = []
        if usage is not None:
            events.append(UsageDelta(usage=usage))
        # Codex usually ends on turn.completed without a thread.completed.
        events.append(Result(success=True, usage=usage))
        return events

    @staticmethod
    def _error(raw, code: str | None) -> Error:
        if isinstance(raw, dict):
            raw = raw.get("message") or json.dumps(raw)
        return Error(kind=ErrorKind.BACKEND_ERROR, message=str(raw), code=code)
