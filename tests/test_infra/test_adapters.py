"""Tests for the backend protocol adapters."""

import json

import pytest

from agentharness.infra.adapters.base import as_float, as_int
from agentharness.infra.adapters.claude import ClaudeAdapter
from agentharness.infra.adapters.cursor import extract_tool_info
from agentharness.infra.adapters.registry import get_adapter
from agentharness.models.backend import BackendKind
from agentharness.models.event import (
    Error,
    ErrorKind,
    Message,
    Result,
    SessionStart,
    TextDelta,
    ToolEnd,
    ToolStart,
    UsageData,
    UsageDelta,
)


def ndjson(*records) -> bytes:
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    return ("\n".join(lines) + "\n").encode()


CLAUDE_OUTPUT = ndjson(
    {"type": "system", "subtype": "init", "session_id": "sess-1", "model": "claude-sonnet-4-5", "cwd": "/tmp/w"},
    {"type": "stream_event", "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}}},
    {"type": "stream_event", "event": {"delta": {"text": "lo"}}},
    {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "text", "text": "Hello"},
                {"type": "tool_use", "id": "tu1", "name": "Bash", "input": {"command": "ls"}},
            ]
        },
    },
    {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "tu1", "content": "a.txt\n"}]}},
    {
        "type": "result",
        "subtype": "success",
        "result": "Hello",
        "session_id": "sess-1",
        "duration_ms": 1200,
        "total_cost_usd": 0.01,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    },
)

CLAUDE_EVENTS = [
    SessionStart(session_id="sess-1", backend="claude", model="claude-sonnet-4-5", cwd="/tmp/w"),
    TextDelta(text="Hel"),
    TextDelta(text="lo"),
    Message(role="assistant", text="Hello"),
    ToolStart(call_id="tu1", tool_name="Bash", input={"command": "ls"}),
    ToolEnd(call_id="tu1", tool_name="Bash", success=True, output="a.txt\n"),
    Result(
        success=True,
        text="Hello",
        session_id="sess-1",
        duration_ms=1200,
        total_cost_usd=0.01,
        usage=UsageData(input_tokens=10, output_tokens=5),
    ),
]

CODEX_OUTPUT = ndjson(
    {"type": "thread.started", "thread_id": "th-1"},
    {"type": "turn.started"},
    {"type": "item.started", "item": {"id": "item_1", "type": "command_execution", "command": "ls", "status": "in_progress"}},
    {
        "type": "item.completed",
        "item": {
            "id": "item_1",
            "type": "command_execution",
            "command": "ls",
            "aggregated_output": "a.txt\n",
            "exit_code": 0,
            "status": "completed",
        },
    },
    {"type": "item.completed", "item": {"id": "item_0", "type": "reasoning", "text": "thinking"}},
    {"type": "item.completed", "item": {"id": "item_2", "type": "agent_message", "text": "Done"}},
    {"type": "turn.completed", "usage": {"input_tokens": 100, "cached_input_tokens": 20, "output_tokens": 7}},
)

_CODEX_USAGE = UsageData(input_tokens=100, output_tokens=7, cache_read_tokens=20)

CODEX_EVENTS = [
    SessionStart(session_id="th-1", backend="codex"),
    ToolStart(call_id="item_1", tool_name="shell", input={"command": "ls"}),
    ToolEnd(call_id="item_1", tool_name="shell", success=True, output="a.txt\n"),
    Message(role="assistant", text="Done"),
    UsageDelta(usage=_CODEX_USAGE),
    Result(success=True, usage=_CODEX_USAGE),
]

OPENCODE_OUTPUT = ndjson(
    "Loading model...",
    {"type": "step_start", "sessionID": "ses_1", "part": {"type": "step-start"}},
    {"type": "text", "sessionID": "ses_1", "part": {"type": "text", "text": "Hi"}},
    {
        "type": "tool_use",
        "sessionID": "ses_1",
        "part": {
            "type": "tool",
            "callID": "call_1",
            "tool": "bash",
            "state": {"status": "completed", "input": {"command": "ls"}, "output": "a.txt"},
        },
    },
    {
        "type": "step_finish",
        "sessionID": "ses_1",
        "part": {"reason": "tool-calls", "cost": 0.001, "tokens": {"input": 10, "output": 2, "cache": {"read": 0, "write": 0}}},
    },
    {"type": "step_start", "sessionID": "ses_1", "part": {"type": "step-start"}},
    {
        "type": "step_finish",
        "sessionID": "ses_1",
        "part": {"reason": "stop", "cost": 0.002, "tokens": {"input": 5, "output": 3, "cache": {"read": 1, "write": 0}}},
    },
)

OPENCODE_EVENTS = [
    TextDelta(text="Loading model..."),
    SessionStart(session_id="ses_1", backend="opencode"),
    Message(role="assistant", text="Hi"),
    ToolStart(call_id="call_1", tool_name="bash", input={"command": "ls"}),
    ToolEnd(call_id="call_1", tool_name="bash", success=True, output="a.txt"),
    UsageDelta(usage=UsageData(input_tokens=10, output_tokens=2, cache_read_tokens=0, cache_creation_tokens=0, cost_usd=0.001)),
    UsageDelta(usage=UsageData(input_tokens=5, output_tokens=3, cache_read_tokens=1, cache_creation_tokens=0, cost_usd=0.002)),
    Result(success=True, session_id="ses_1"),
]

CURSOR_OUTPUT = ndjson(
    {"type": "system", "subtype": "init", "session_id": "cur-1", "model": "gpt-5", "cwd": "/w"},
    {"type": "user", "message": {"role": "user", "content": [{"type": "text", "text": "list files"}]}},
    {"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": "Looking"}]}},
    {"type": "tool_call", "subtype": "started", "call_id": "c1", "tool_call": {"readToolCall": {"args": {"path": "a.txt"}}}},
    {
        "type": "tool_call",
        "subtype": "completed",
        "call_id": "c1",
        "tool_call": {"readToolCall": {"args": {"path": "a.txt"}, "result": {"success": {"content": "x"}}}},
    },
    {"type": "result", "subtype": "success", "is_error": False, "result": "Looking", "session_id": "cur-1", "duration_ms": 500},
)

CURSOR_EVENTS = [
    SessionStart(session_id="cur-1", backend="cursor", model="gpt-5", cwd="/w"),
    Message(role="user", text="list files"),
    Message(role="assistant", text="Looking"),
    ToolStart(call_id="c1", tool_name="read", input={"path": "a.txt"}),
    ToolEnd(call_id="c1", tool_name="read", success=True, output={"success": {"content": "x"}}),
    Result(success=True, text="Looking", session_id="cur-1", duration_ms=500),
]

FIXTURES = {
    BackendKind.CLAUDE: (CLAUDE_OUTPUT, CLAUDE_EVENTS),
    BackendKind.CODEX: (CODEX_OUTPUT, CODEX_EVENTS),
    BackendKind.OPENCODE: (OPENCODE_OUTPUT, OPENCODE_EVENTS),
    BackendKind.CURSOR: (CURSOR_OUTPUT, CURSOR_EVENTS),
}


def parse_all(backend, *chunks):
    adapter = get_adapter(backend)
    events = []
    for chunk in chunks:
        events.extend(adapter.feed(chunk))
    events.extend(adapter.finish())
    return events


@pytest.mark.parametrize("backend", list(FIXTURES))
class TestFramingProperties:
    def test_fixture_maps_to_expected_events(self, backend):
        data, expected = FIXTURES[backend]
        assert parse_all(backend, data) == expected

    def test_any_split_point_gives_same_events(self, backend):
        data, expected = FIXTURES[backend]
        for i in range(len(data) + 1):
            assert parse_all(backend, data[:i], data[i:]) == expected, f"split at {i}"

    def test_byte_at_a_time(self, backend):
        data, expected = FIXTURES[backend]
        assert parse_all(backend, *(data[i : i + 1] for i in range(len(data)))) == expected

    def test_truncated_final_record(self, backend):
        data, expected = FIXTURES[backend]
        events = parse_all(backend, data + b'{"type": "assistant", "mess')
        assert events[:-1] == expected
        last = events[-1]
        assert isinstance(last, Error)
        assert last.kind is ErrorKind.MALFORMED_OUTPUT
        assert last.code == "E004"

    def test_missing_trailing_newline_still_parsed(self, backend):
        data, expected = FIXTURES[backend]
        assert parse_all(backend, data.rstrip(b"\n")) == expected

    def test_invalid_utf8_terminates_adapter(self, backend):
        data, expected = FIXTURES[backend]
        adapter = get_adapter(backend)
        events = adapter.feed(b"\xff\xfe\n" + data)
        assert len(events) == 1
        assert events[0].kind is ErrorKind.MALFORMED_OUTPUT
        assert adapter.terminated
        assert adapter.feed(data) == []
        assert adapter.finish() == []

    @pytest.mark.parametrize("number", [b"1e400", b"-1e400", b"NaN", b"Infinity", b"-Infinity"])
    def test_non_finite_number_is_malformed_line(self, backend, number):
        data, expected = FIXTURES[backend]
        line = b'{"type": "result", "subtype": "success", "duration_ms": ' + number + b"}\n"
        events = parse_all(backend, line + data)
        assert isinstance(events[0], Error)
        assert events[0].kind is ErrorKind.MALFORMED_OUTPUT
        assert events[0].code == "E004"
        assert events[1:] == expected

    def test_finish_is_idempotent(self, backend):
        data, _ = FIXTURES[backend]
        adapter = get_adapter(backend)
        adapter.feed(data + b'{"partial"')
        assert len(adapter.finish()) == 1
        assert adapter.finish() == []


class TestLineHandling:
    def test_invalid_json_line_is_reported_and_skipped(self):
        events = parse_all(BackendKind.CLAUDE, b"{not json}\n" + CLAUDE_OUTPUT)
        assert isinstance(events[0], Error)
        assert events[0].kind is ErrorKind.MALFORMED_OUTPUT
        assert "Invalid JSON" in events[0].message
        assert events[1:] == CLAUDE_EVENTS

    def test_blank_lines_and_non_objects_ignored(self):
        events = parse_all(BackendKind.CODEX, b"\n   \n[1, 2]\n42\n" + CODEX_OUTPUT)
        assert events == CODEX_EVENTS

    def test_unknown_record_types_ignored(self):
        events = parse_all(BackendKind.CURSOR, ndjson({"type": "heartbeat"}, {"type": "system", "subtype": "other"}))
        assert events == []

    def test_opencode_plain_text_becomes_delta(self):
        events = parse_all(BackendKind.OPENCODE, b"compiling...\n")
        assert events == [TextDelta(text="compiling...")]

    def test_opencode_plain_text_final_line(self):
        events = parse_all(BackendKind.OPENCODE, b"done")
        assert events == [TextDelta(text="done")]

    def test_get_adapter_returns_fresh_instances(self):
        assert get_adapter("claude") is not get_adapter("claude")

    def test_record_that_breaks_parsing_is_malformed(self):
        class Fragile(ClaudeAdapter):
            def parse_record(self, record):
                if record.get("type") == "boom":
                    raise TypeError("unexpected shape")
                return super().parse_record(record)

        adapter = Fragile()
        events = adapter.feed(ndjson({"type": "boom"}) + CLAUDE_OUTPUT) + adapter.finish()
        assert events[0].kind is ErrorKind.MALFORMED_OUTPUT
        assert "unexpected shape" in events[0].message
        assert events[1:] == CLAUDE_EVENTS


class TestNumberCoercion:
    def test_as_int(self):
        assert as_int(3) == 3
        assert as_int(2.9) == 2
        assert as_int(True) is None
        assert as_int("3") is None
        assert as_int(float("inf")) is None
        assert as_int(float("nan")) is None

    def test_as_float(self):
        assert as_float(2) == 2.0
        assert as_float(False) is None
        assert as_float(float("-inf")) is None
        assert as_float(10**400) is None


class TestClaudeAdapter:
    def test_error_result(self):
        events = parse_all(
            BackendKind.CLAUDE,
            ndjson({"type": "result", "subtype": "error_max_turns", "session_id": "s", "is_error": True}),
        )
        assert events == [Result(success=False, session_id="s")]

    def test_tool_result_error_and_list_content(self):
        events = parse_all(
            BackendKind.CLAUDE,
            ndjson(
                {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": "t", "name": "Read", "input": {}}]}},
                {
                    "type": "user",
                    "message": {
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": "t",
                                "is_error": True,
                                "content": [{"type": "text", "text": "no such file"}],
                            }
                        ]
                    },
                },
            ),
        )
        assert events[1] == ToolEnd(call_id="t", tool_name="Read", success=False, output="no such file")

    def test_stream_usage(self):
        events = parse_all(
            BackendKind.CLAUDE,
            ndjson({"type": "stream_event", "event": {"type": "message_delta", "usage": {"output_tokens": 12}}}),
        )
        assert events == [UsageDelta(usage=UsageData(output_tokens=12))]


class TestCodexAdapter:
    def test_failed_command(self):
        events = parse_all(
            BackendKind.CODEX,
            ndjson({"type": "item.completed", "item": {"id": "i", "type": "command_execution", "command": "false", "exit_code": 1}}),
        )
        assert events == [ToolEnd(call_id="i", tool_name="shell", success=False, output='{"command": "false"}')]

    def test_turn_failed(self):
        events = parse_all(BackendKind.CODEX, ndjson({"type": "turn.failed", "error": {"message": "boom"}}))
        assert events == [Error(kind=ErrorKind.BACKEND_ERROR, message="boom", code="turn_failed")]

    def test_error_record(self):
        events = parse_all(BackendKind.CODEX, ndjson({"type": "error", "message": "rate limited"}))
        assert events == [Error(kind=ErrorKind.BACKEND_ERROR, message="rate limited")]

    def test_file_change(self):
        events = parse_all(
            BackendKind.CODEX,
            ndjson({"type": "item.completed", "item": {"id": "f", "type": "file_change", "path": "a.py", "status": "completed"}}),
        )
        assert events == [
            ToolStart(call_id="f", tool_name="file_change", input={"path": "a.py"}),
            ToolEnd(call_id="f", tool_name="file_change", success=True),
        ]


class TestOpenCodeAdapter:
    def test_failed_tool(self):
        events = parse_all(
            BackendKind.OPENCODE,
            ndjson(
                {
                    "type": "tool_use",
                    "part": {"callID": "x", "tool": "read", "state": {"status": "error", "input": {}, "error": "missing"}},
                }
            ),
        )
        assert events[1] == ToolEnd(call_id="x", tool_name="read", success=False, output="missing")

    def test_legacy_records(self):
        events = parse_all(
            BackendKind.OPENCODE,
            ndjson(
                {"type": "session.start", "session_id": "old", "model": "m"},
                {"type": "message", "content": "hey"},
                {"type": "error", "message": "bad"},
                {"type": "result", "success": False},
            ),
        )
        assert events == [
            SessionStart(session_id="old", backend="opencode", model="m"),
            Message(role="assistant", text="hey"),
            Error(kind=ErrorKind.BACKEND_ERROR, message="bad"),
            Result(success=False),
        ]


class TestCursorToolInfo:
    def test_nested_tool_call(self):
        assert extract_tool_info({"shellToolCall": {"args": {"command": "ls"}}}) == (
            "shell",
            {"args": {"command": "ls"}},
        )

    def test_snake_case_tool_call(self):
        name, _ = extract_tool_info({"edit_tool_call": {}})
        assert name == "edit"

    def test_flat_tool_call(self):
        assert extract_tool_info({"name": "grep", "arguments": {"q": "x"}}) == ("grep", {"args": {"q": "x"}})

    def test_unrecognized(self):
        assert extract_tool_info(None) == ("unknown", {})
        assert extract_tool_info({}) == ("unknown", {})

    def test_failed_tool_result(self):
        events = parse_all(
            BackendKind.CURSOR,
            ndjson(
                {
                    "type": "tool_call",
                    "subtype": "completed",
                    "call_id": "c",
                    "tool_call": {"readToolCall": {"result": {"error": {"message": "denied"}}}},
                }
            ),
        )
        assert events == [ToolEnd(call_id="c", tool_name="read", success=False, output={"error": {"message": "denied"}})]
