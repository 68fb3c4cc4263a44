"""Claude Code ``--output-format stream-json`` adapter.

Record types handled::

    {"type": "system", "subtype": "init", "session_id", "model", "cwd"}
    {"type": "stream_event", "event": {"delta": {"text"}, "usage"}}
    {"type": "assistant", "message": {"content": [{"type": "text"}, {"type": "tool_use"}]}}
    {"type": "user", "message": {"content": [{"type": "tool_result"}]}}
    {"type": "result", "subtype": "success"|"error_*", "result", "usage", ...}
"""

from __future__ import annotations

from agentharness.infra.adapters.base import (
    JsonLinesAdapter,
    as_float,
    as_int,
    as_str,
    dig,
    joined_text,
    usage_or_none,
)
from agentharness.models.backend import BackendKind
from agentharness.models.event import (
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


def parse_usage(raw) -> UsageData | None:
    if not isinstance(raw, dict):
        return None
    cache_read = raw.get("cache_read_input_tokens", raw.get("cache_read_tokens"))
    cache_creation = raw.get("cache_creation_input_tokens", raw.get("cache_creation_tokens"))
    return usage_or_none(
        UsageData(
            input_tokens=as_int(raw.get("input_tokens")),
            output_tokens=as_int(raw.get("output_tokens")),
            cache_read_tokens=as_int(cache_read),
            cache_creation_tokens=as_int(cache_creation),
            cost_usd=as_float(raw.get("cost_usd", raw.get("cost"))),
        )
    )


class ClaudeAdapter(JsonLinesAdapter):
    backend = BackendKind.CLAUDE

    def parse_record(self, record: dict) -> list[Event]:
        kind = record.get("type")
        if kind == "system":
            return self._on_system(record)
        if kind == "stream_event":
            return self._on_stream_event(record)
        if kind == "assistant":
            return self._on_assistant(record)
        if kind == "user":
            return self._on_user(record)
        if kind == "result":
            return self._on_result(record)
        return self.ignore(kind)

    def _on_system(self, record: dict) -> list[Event]:
        if record.get("subtype") != "init":
            return []
        return [
            SessionStart(
                session_id=as_str(record.get("session_id")) or "",
                backend=self.backend.value,
                model=as_str(record.get("model")),
                cwd=as_str(record.get("cwd")),
            )
        ]

    def _on_stream_event(self, record: dict) -> list[Event]:
        events: list[Event] = []
        text = as_str(dig(record, "event", "delta", "text"))
        if text:
            events.append(TextDelta(text=text))
        usage = parse_usage(dig(record, "event", "usage") or record.get("usage"))
        if usage is not None:
            events.append(UsageDelta(usage=usage))
        return events

    def _on_assistant(self, record: dict) -> list[Event]:
        blocks = dig(record, "message", "content")
        if not isinstance(blocks, list):
            return []
        events: list[Event] = []
        text = joined_text(blocks)
        if text:
            events.append(Message(role="assistant", text=text))
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            call_id = as_str(block.get("id")) or ""
            name = as_str(block.get("name")) or "unknown"
            self.remember_tool(call_id, name)
            events.append(ToolStart(call_id=call_id, tool_name=name, input=block.get("input", {})))
        return events

    def _on_user(self, record: dict) -> list[Event]:
        blocks = dig(record, "message", "content")
        if not isinstance(blocks, list):
            return []
        events: list[Event] = []
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            call_id = as_str(block.get("tool_use_id")) or ""
            content = block.get("content")
            output = joined_text(content, block_type=None) if isinstance(content, list) else content
            events.append(
                ToolEnd(
                    call_id=call_id,
                    tool_name=self.tool_name(call_id),
                    success=not block.get("is_error", False),
                    output=output,
                )
            )
        return events

    def _on_result(self, record: dict) -> list[Event]:
        subtype = record.get("subtype", "success")
        return [
            Result(
                success=subtype == "success" and not record.get("is_error", False),
                text=as_str(record.get("result")),
                session_id=as_str(record.get("session_id")) or "",
                duration_ms=as_int(record.get("duration_ms")),
                total_cost_usd=as_float(record.get("total_cost_usd")),
                usage=parse_usage(record.get("usage")),
            )
        ]
