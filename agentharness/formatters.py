"""Output formatters for ``run``: stream-json, json, text and markdown."""

from __future__ import annotations

import json
from typing import TextIO

import click

from agentharness.models.event import (
    Error,
    Event,
    Message,
    Result,
    SessionStart,
    TextDelta,
    ToolEnd,
    ToolStart,
    UsageData,
    extract_tool_calls,
    format_token_count,
    sum_costs,
    total_tokens,
)
from agentharness.services.run_service import serialize_event

OUTPUT_FORMATS = ("stream-json", "json", "text", "markdown")


class StreamJsonFormatter:
    """One event per line, written and flushed immediately."""

    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out

    def __call__(self, event: Event) -> None:
        click.echo(serialize_event(event), file=self.out)

    def finish(self) -> None:
        pass


class JsonFormatter:
    """Buffers the run and prints one summary object at the end."""

    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def finish(self) -> None:
        start = next((e for e in self.events if isinstance(e, SessionStart)), None)
        result = next((e for e in reversed(self.events) if isinstance(e, Result)), None)
        usage = _run_usage(result, self.events)
        doc = {
            "session_id": start.session_id if start else None,
            "backend": start.backend if start else None,
            "model": start.model if start else None,
            "success": result.success if result else False,
            "exit_code": result.exit_code if result else None,
            "duration_ms": result.duration_ms if result else None,
            "text": result.text if result else None,
            "total_cost_usd": sum_costs(self.events),
            "usage": usage.to_dict() if usage is not None else None,
            "errors": [e.to_dict() for e in self.events if isinstance(e, Error)],
            "events": [e.to_dict() for e in self.events],
        }
        click.echo(json.dumps(doc, indent=2, ensure_ascii=False), file=self.out)


class TextFormatter:
    """Streams assistant text to stdout; tool activity and errors to stderr."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self.out = out
        self.err = err
        self._streamed = False
        self._at_line_start = True

    def __call__(self, event: Event) -> None:
        if isinstance(event, TextDelta):
            self._streamed = True
            self._write(event.text)
        elif isinstance(event, Message) and event.role == "assistant":
            # Backends that stream deltas repeat the text in full messages.
            if not self._streamed:
                self._write(event.text + "\n")
            else:
                self._newline()
        elif isinstance(event, ToolStart):
            self._newline()
            click.echo(f"[tool] {event.tool_name}", file=self.err, err=self.err is None)
        elif isinstance(event, ToolEnd) and not event.success:
            click.echo(f"[tool] {event.tool_name} failed", file=self.err, err=self.err is None)
        elif isinstance(event, Error):
            self._newline()
            click.echo(f"error: {event.message}", file=self.err, err=self.err is None)

    def _write(self, text: str) -> None:
        if not text:
            return
        click.echo(text, file=self.out, nl=False)
        self._at_line_start = text.endswith("\n")

    def _newline(self) -> None:
        if not self._at_line_start:
            click.echo("", file=self.out)
            self._at_line_start = True

    def finish(self) -> None:
        self._newline()


class MarkdownFormatter:
    """Renders the finished run as a Markdown transcript."""

    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def render(self) -> str:
        lines: list[str] = []
        ends = {end.call_id: end for _, end in extract_tool_calls(self.events) if end is not None}
        for event in self.events:
            if isinstance(event, SessionStart):
                lines.append(f"# Session `{event.session_id}`")
                lines.append("")
                lines.append(f"- **Backend:** {event.backend}")
                if event.model:
                    lines.append(f"- **Model:** {event.model}")
                if event.cwd:
                    lines.append(f"- **Directory:** `{event.cwd}`")
                lines.append("")
            elif isinstance(event, Message):
                lines.append(f"## {event.role.capitalize()}")
                lines.append("")
                lines.append(event.text)
                lines.append("")
            elif isinstance(event, ToolStart):
                end = ends.get(event.call_id)
                status = "" if end is None else (" (ok)" if end.success else " (failed)")
                lines.append(f"### Tool: `{event.tool_name}`{status}")
                lines.append("")
                lines.append("```json")
                lines.append(json.dumps(event.input, indent=2, ensure_ascii=False))
                lines.append("```")
                lines.append("")
            elif isinstance(event, Error):
                lines.append(f"> **Error ({event.kind.value}):** {event.message}")
                lines.append("")
            elif isinstance(event, Result):
                lines.extend(_result_summary(event, self.events))
        return "\n".join(lines).rstrip() + "\n"

    def finish(self) -> None:
        click.echo(self.render(), file=self.out, nl=False)


def _run_usage(result: Result | None, events: list[Event]) -> UsageData | None:
    if result is not None and result.usage is not None:
        return result.usage
    usage = total_tokens(events)
    return None if usage.is_empty else usage


def _result_summary(result: Result, events: list[Event]) -> list[str]:
    usage = _run_usage(result, events)
    cost = sum_costs(events)
    lines = [
        "---",
        "",
        f"**Result:** {'success' if result.success else 'failed'}"
        + (f" (exit {result.exit_code})" if result.exit_code is not None else ""),
    ]
    if result.duration_ms is not None:
        lines.append(f"**Duration:** {result.duration_ms / 1000:.1f}s")
    if usage is not None:
        lines.append(
            f"**Tokens:** {format_token_count(usage.input_tokens)} in / "
            f"{format_token_count(usage.output_tokens)} out"
        )
    if cost is not None:
        lines.append(f"**Cost:** ${cost:.4f}")
    return lines


_FORMATTERS = {
    "stream-json": StreamJsonFormatter,
    "json": JsonFormatter,
    "text": TextFormatter,
    "markdown": MarkdownFormatter,
}


def get_formatter(name: str, out: TextIO | None = None, err: TextIO | None = None):
    cls = _FORMATTERS.get(name)
    if cls is None:
        raise ValueError(f"Unknown output format: {name!r}")
    if cls is TextFormatter:
        return cls(out, err)
    return cls(out)
