"""Event normalizer: enforces the stream contract on adapter output.

Every normalized stream starts with exactly one SessionStart and ends with
exactly one Result. Results reported by a backend are held back and folded
into the final lifecycle Result, which also carries the exit code and the
measured duration.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace

from agentharness.errors import HarnessError, ProcessTimeout
from agentharness.infra.subprocess_mgr import ExitOutcome
from agentharness.models.backend import BackendKind
from agentharness.models.event import (
    Error,
    ErrorKind,
    Event,
    Message,
    Result,
    SessionStart,
    UsageData,
    UsageDelta,
)

logger = logging.getLogger(__name__)

PROCESS_FAILED_CODE = "E003"
STDERR_EXCERPT_CHARS = 4000


def _now_ms() -> int:
    return int(time.time() * 1000)


class EventNormalizer:
    def __init__(
        self,
        backend: BackendKind | str,
        model: str | None = None,
        cwd: str | None = None,
        prompt: str | None = None,
        echo_prompt: bool = False,
    ) -> None:
        self._backend = BackendKind.parse(backend)
        self._model = model
        self._cwd = cwd
        self._prompt = prompt or ""
        self._prompt_pending = bool(echo_prompt and prompt)

        self._session_id = ""
        self._started = False
        self._closed = False
        self._last_assistant_text: str | None = None
        self._usage = UsageData()
        self._seen_usage = False
        self._total_cost: float | None = None
        self._backend_result: Result | None = None
        self._backend_failed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, events: list[Event]) -> list[Event]:
        """Normalize a batch of adapter events, in order."""
        out: list[Event] = []
        for event in events:
            out.extend(self._accept(event))
        return out

    def close(self, outcome: ExitOutcome, stderr_tail: str = "") -> list[Event]:
        """Emit the terminal events for a finished process. Idempotent."""
        if self._closed:
            return []
        out = self._ensure_started()
        out.extend(self._flush_prompt())

        if outcome.timed_out:
            error = ProcessTimeout(outcome.duration_ms / 1000)
            out.append(self._stamp(Error(kind=ErrorKind.TIMEOUT, message=str(error), code=error.code)))
        elif outcome.exit_code != 0:
            message = f"Process exited with code {outcome.exit_code}"
            tail = stderr_tail.strip()
            if tail:
                message = f"{message}: {tail[-STDERR_EXCERPT_CHARS:]}"
            out.append(self._stamp(Error(kind=ErrorKind.PROCESS_FAILED, message=message, code=PROCESS_FAILED_CODE)))

        out.append(self._final_result(outcome))
        self._closed = True
        return out

    def spawn_failed(self, error: HarnessError) -> list[Event]:
        """Terminal events for a process that never started."""
        if self._closed:
            return []
        out = self._ensure_started()
        out.append(self._stamp(Error(kind=ErrorKind.SPAWN_FAILED, message=str(error), code=error.code)))
        out.append(self._stamp(Result(success=False, exit_code=None, duration_ms=0)))
        self._closed = True
        return out

    def _accept(self, event: Event) -> list[Event]:
        if self._closed:
            logger.debug("Dropping %s after stream close", event.type.value)
            return []
        if isinstance(event, SessionStart):
            if self._started:
                logger.debug("Dropping duplicate session_start from %s", self._backend.value)
                return []
            return self._ensure_started(event)

        out = self._ensure_started()

        if isinstance(event, Result):
            self._hold(event)
            if not self._seen_usage and event.usage is not None:
                out.extend(self._flush_prompt())
                out.append(self._usage_delta(event.usage))
            return out

        if isinstance(event, Message):
            if event.role == "user":
                self._prompt_pending = False
            elif event.role == "assistant" and event.text:
                self._last_assistant_text = event.text
        elif isinstance(event, UsageDelta):
            out.extend(self._flush_prompt())
            out.append(self._usage_delta(event.usage))
            return out
        elif isinstance(event, Error) and event.kind is ErrorKind.BACKEND_ERROR:
            self._backend_failed = True

        out.extend(self._flush_prompt())
        out.append(self._stamp(event))
        return out

    def _ensure_started(self, reported: SessionStart | None = None) -> list[Event]:
        if self._started:
            return []
        self._started = True
        if reported is None:
            logger.debug("%s reported no session; synthesizing one", self._backend.value)
        self._session_id = (reported.session_id if reported else "") or str(uuid.uuid4())
        start = SessionStart(
            backend=self._backend.value,
            model=(reported.model if reported else None) or self._model,
            cwd=(reported.cwd if reported else None) or self._cwd,
        )
        return [self._stamp(start)]

    def _flush_prompt(self) -> list[Event]:
        if not self._prompt_pending:
            return []
        self._prompt_pending = False
        return [self._stamp(Message(role="user", text=self._prompt))]

    def _usage_delta(self, usage: UsageData) -> UsageDelta:
        self._seen_usage = True
        self._usage = self._usage.merged(usage)
        if usage.cost_usd is not None:
            self._total_cost = (self._total_cost or 0.0) + usage.cost_usd
        return self._stamp(UsageDelta(usage=usage, total_cost_usd=self._total_cost))

    def _hold(self, result: Result) -> None:
        prev = self._backend_result
        if prev is None:
            self._backend_result = result
            return
        self._backend_result = Result(
            success=prev.success and result.success,
            text=result.text or prev.text,
            duration_ms=result.duration_ms if result.duration_ms is not None else prev.duration_ms,
            total_cost_usd=result.total_cost_usd if result.total_cost_usd is not None else prev.total_cost_usd,
            usage=result.usage or prev.usage,
        )

    def _final_result(self, outcome: ExitOutcome) -> Result:
        held = self._backend_result
        success = outcome.success and not self._backend_failed and (held is None or held.success)
        usage = held.usage if held is not None and held.usage is not None else None
        if usage is None and self._seen_usage:
            usage = self._usage
        total_cost = held.total_cost_usd if held is not None else None
        if total_cost is None:
            total_cost = self._total_cost
        text = held.text if held is not None and held.text else self._last_assistant_text
        return self._stamp(
            Result(
                success=success,
                exit_code=outcome.exit_code,
                duration_ms=outcome.duration_ms,
                text=text,
                total_cost_usd=total_cost,
                usage=usage,
            )
        )

    def _stamp(self, event):
        return replace(event, session_id=self._session_id, timestamp_ms=_now_ms())
