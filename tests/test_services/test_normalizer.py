"""Tests for the stream lifecycle normalizer."""

from __future__ import annotations

import pytest

from agentharness.errors import ProcessSpawnFailed
from agentharness.infra.subprocess_mgr import ExitOutcome
from agentharness.models.event import (
    Error,
    ErrorKind,
    Message,
    Result,
    SessionStart,
    TextDelta,
    ToolStart,
    UsageData,
    UsageDelta,
)
from agentharness.services.normalizer import EventNormalizer

CLEAN_EXIT = ExitOutcome(exit_code=0, duration_ms=120)


@pytest.fixture
def normalizer():
    return EventNormalizer("claude", model="claude-opus-4-6", cwd="/work", prompt="hi")


def types(events):
    return [type(e) for e in events]


class TestSessionStart:
    def test_synthesized_when_missing(self, normalizer):
        out = normalizer.push([TextDelta(text="x")])
        assert types(out) == [SessionStart, TextDelta]
        start = out[0]
        assert start.backend == "claude"
        assert start.model == "claude-opus-4-6"
        assert start.cwd == "/work"
        assert start.session_id
        assert out[1].session_id == start.session_id

    def test_reported_session_kept(self, normalizer):
        out = normalizer.push([SessionStart(session_id="s1", backend="claude", model="reported-model")])
        assert out[0].session_id == "s1"
        assert out[0].model == "reported-model"
        assert out[0].cwd == "/work"
        assert normalizer.session_id == "s1"

    def test_duplicate_dropped(self, normalizer):
        out = normalizer.push(
            [SessionStart(session_id="s1"), TextDelta(text="a"), SessionStart(session_id="s2")]
        )
        assert types(out) == [SessionStart, TextDelta]
        assert all(e.session_id == "s1" for e in out)

    def test_late_session_start_after_synthesized_is_dropped(self, normalizer):
        normalizer.push([TextDelta(text="a")])
        assert normalizer.push([SessionStart(session_id="late")]) == []


class TestResult:
    def test_backend_result_is_held_and_merged(self, normalizer):
        out = normalizer.push(
            [
                SessionStart(session_id="s1"),
                Message(text="partial"),
                Result(success=True, text="done", total_cost_usd=0.2, usage=UsageData(input_tokens=7)),
            ]
        )
        assert Result not in types(out)
        # No usage was streamed, so the Result's usage becomes a delta.
        assert out[-1] == UsageDelta(
            usage=UsageData(input_tokens=7), session_id="s1", timestamp_ms=out[-1].timestamp_ms
        )

        final = normalizer.close(CLEAN_EXIT)
        assert types(final) == [Result]
        result = final[0]
        assert result.success
        assert result.exit_code == 0
        assert result.duration_ms == 120
        assert result.text == "done"
        assert result.total_cost_usd == 0.2
        assert result.usage == UsageData(input_tokens=7)
        assert result.session_id == "s1"

    def test_no_synthetic_delta_when_usage_streamed(self, normalizer):
        out = normalizer.push(
            [UsageDelta(usage=UsageData(output_tokens=3)), Result(usage=UsageData(output_tokens=3))]
        )
        assert types(out) == [SessionStart, UsageDelta]

    def test_text_falls_back_to_last_assistant_message(self, normalizer):
        normalizer.push([Message(text="first"), Message(text="second"), Message(role="user", text="ignored")])
        assert normalizer.close(CLEAN_EXIT)[-1].text == "second"

    def test_multiple_backend_results_collapse(self, normalizer):
        normalizer.push([Result(success=True, text="one"), Result(success=False)])
        final = normalizer.close(CLEAN_EXIT)
        results = [e for e in final if isinstance(e, Result)]
        assert len(results) == 1
        assert not results[0].success
        assert results[0].text == "one"

    def test_backend_error_fails_run(self, normalizer):
        normalizer.push([Error(kind=ErrorKind.BACKEND_ERROR, message="rate limited")])
        assert not normalizer.close(CLEAN_EXIT)[-1].success

    def test_malformed_output_does_not_fail_run(self, normalizer):
        normalizer.push([Error(kind=ErrorKind.MALFORMED_OUTPUT, message="bad line")])
        assert normalizer.close(CLEAN_EXIT)[-1].success

    def test_usage_accumulates_without_backend_result(self, normalizer):
        out = normalizer.push(
            [
                UsageDelta(usage=UsageData(input_tokens=1, cost_usd=0.1)),
                UsageDelta(usage=UsageData(input_tokens=2, cost_usd=0.2)),
            ]
        )
        assert out[1].total_cost_usd == pytest.approx(0.1)
        assert out[2].total_cost_usd == pytest.approx(0.3)
        result = normalizer.close(CLEAN_EXIT)[-1]
        assert result.usage.input_tokens == 3
        assert result.total_cost_usd == pytest.approx(0.3)


class TestTermination:
    def test_close_without_events(self, normalizer):
        out = normalizer.close(CLEAN_EXIT)
        assert types(out) == [SessionStart, Result]
        assert out[1].success

    def test_timeout(self, normalizer):
        normalizer.push([TextDelta(text="working")])
        out = normalizer.close(ExitOutcome(exit_code=-15, timed_out=True, duration_ms=1500))
        assert types(out) == [Error, Result]
        assert out[0].kind is ErrorKind.TIMEOUT
        assert out[0].code == "E005"
        assert out[0].message == "[E005] Process timed out after 1.5s and was killed"
        assert not out[1].success
        assert out[1].exit_code == -15

    def test_nonzero_exit_includes_stderr(self, normalizer):
        out = normalizer.close(ExitOutcome(exit_code=2, duration_ms=5), stderr_tail="boom\n")
        error = out[1]
        assert error.kind is ErrorKind.PROCESS_FAILED
        assert error.message == "Process exited with code 2: boom"
        assert not out[2].success
        assert out[2].exit_code == 2

    def test_spawn_failed(self, normalizer):
        out = normalizer.spawn_failed(ProcessSpawnFailed("claude", "binary not found"))
        assert types(out) == [SessionStart, Error, Result]
        assert out[1].kind is ErrorKind.SPAWN_FAILED
        assert out[1].code == "E002"
        assert out[2].success is False
        assert out[2].exit_code is None
        assert normalizer.closed
        assert normalizer.close(CLEAN_EXIT) == []

    def test_events_after_close_dropped(self, normalizer):
        normalizer.close(CLEAN_EXIT)
        assert normalizer.push([TextDelta(text="late")]) == []
        assert normalizer.close(CLEAN_EXIT) == []

    def test_stream_contract(self, normalizer):
        events = normalizer.push(
            [
                TextDelta(text="a"),
                SessionStart(session_id="ignored"),
                ToolStart(call_id="1", tool_name="Bash"),
                Result(text="r"),
                Result(text="r2"),
            ]
        )
        events += normalizer.close(CLEAN_EXIT)
        assert isinstance(events[0], SessionStart)
        assert isinstance(events[-1], Result)
        assert types(events).count(SessionStart) == 1
        assert types(events).count(Result) == 1
        assert len({e.session_id for e in events}) == 1
        stamps = [e.timestamp_ms for e in events]
        assert stamps == sorted(stamps)


class TestEchoPrompt:
    def test_prompt_echoed_after_session_start(self):
        normalizer = EventNormalizer("codex", prompt="do it", echo_prompt=True)
        out = normalizer.push([SessionStart(session_id="t"), TextDelta(text="ok")])
        assert types(out) == [SessionStart, Message, TextDelta]
        assert out[1].role == "user"
        assert out[1].text == "do it"

    def test_backend_user_message_suppresses_echo(self):
        normalizer = EventNormalizer("cursor", prompt="do it", echo_prompt=True)
        out = normalizer.push([SessionStart(session_id="t"), Message(role="user", text="do it")])
        assert [e for e in out if isinstance(e, Message)] == [out[1]]

    def test_prompt_echoed_on_empty_stream(self):
        normalizer = EventNormalizer("opencode", prompt="do it", echo_prompt=True)
        assert types(normalizer.close(CLEAN_EXIT)) == [SessionStart, Message, Result]
