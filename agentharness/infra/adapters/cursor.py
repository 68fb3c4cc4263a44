"""Cursor agent ``--output-format stream-json`` adapter."""

from __future__ import annotations

from agentharness.infra.adapters.base import JsonLinesAdapter, as_int, as_str, dig, joined_text
from agentharness.models.backend import BackendKind
from agentharness.models.event import Event, Message, Result, SessionStart, ToolEnd, ToolStart

_TOOL_SUFFIXES = ("ToolCall", "_tool_call")


def extract_tool_info(tool_call) -> tuple[str, dict]:
    """Find the tool name and payload inside a Cursor ``tool_call`` object.

    Cursor nests calls under keys like ``readToolCall``; older builds use
    flat ``name``/``arguments`` keys.
    """
    if not isinstance(tool_call, dict):
        return "unknown", {}
    for key, value in tool_call.items():
        for suffix in _TOOL_SUFFIXES:
            if key.endswith(suffix) and len(key) > len(suffix):
                return key[: -len(suffix)], value if isinstance(value, dict) else {}
    name = as_str(tool_call.get("name"))
    if name:
        return name, {"args": tool_call.get("arguments")}
    return "unknown", {}


class CursorAdapter(JsonLinesAdapter):
    backend = BackendKind.CURSOR

    def parse_record(self, record: dict) -> list[Event]:
        kind = record.get("type")
        if kind == "system":
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
        if kind in ("assistant", "user"):
            text = joined_text(dig(record, "message", "content"))
            return [Message(role=kind, text=text)] if text else []
        if kind == "tool_call":
            return self._on_tool_call(record)
        if kind == "result":
            subtype = record.get("subtype", "success")
            return [
                Result(
                    success=subtype == "success" and not record.get("is_error", False),
                    text=as_str(record.get("result")),
                    session_id=as_str(record.get("session_id")) or "",
                    duration_ms=as_int(record.get("duration_ms")),
                )
            ]
        return self.ignore(kind)

    def _on_tool_call(self, record: dict) -> list[Event]:
        subtype = record.get("subtype")
        call_id = as_str(record.get("call_id")) or ""
        name, payload = extract_tool_info(record.get("tool_call"))
        if subtype == "started":
            self.remember_tool(call_id, name)
            return [ToolStart(call_id=call_id, tool_name=name, input=payload.get("args", {}))]
        if subtype == "completed":
            result = payload.get("result")
            failed = isinstance(result, dict) and "error" in result
            return [
                ToolEnd(
                    call_id=call_id,
                    tool_name=self.tool_name(call_id, name),
                    success=not failed,
                    output=result,
                )
            ]
        return self.ignore(f"tool_call/{subtype}")
