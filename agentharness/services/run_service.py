"""Run orchestration: launcher -> adapter -> normalizer."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator, Callable
from typing import TextIO

from agentharness.errors import ProcessSpawnFailed
from agentharness.infra.adapters.registry import get_adapter
from agentharness.infra.subprocess_mgr import OutputChunk, StreamSource, SubprocessLauncher
from agentharness.models.command import ResolvedCommand
from agentharness.models.event import Event, Result
from agentharness.services.normalizer import EventNormalizer

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 64 * 1024


def serialize_event(event: Event) -> str:
    """One compact JSON line, without the trailing newline."""
    return json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False)


def ndjson_sink(stream: TextIO) -> Callable[[Event], None]:
    """Sink that writes and flushes each event as soon as it is produced."""

    def write(event: Event) -> None:
        stream.write(serialize_event(event) + "\n")
        stream.flush()

    return write


class RunService:
    """Runs one resolved command and yields its normalized events."""

    def __init__(self, launcher: SubprocessLauncher | None = None) -> None:
        self._launcher = launcher or SubprocessLauncher()

    def _normalizer(self, command: ResolvedCommand, echo_prompt: bool) -> EventNormalizer:
        return EventNormalizer(
            command.backend,
            model=command.model,
            cwd=command.cwd or os.getcwd(),
            prompt=command.prompt,
            echo_prompt=echo_prompt,
        )

    async def stream_events(
        self,
        command: ResolvedCommand,
        timeout: float | None = None,
        echo_prompt: bool = False,
    ) -> AsyncIterator[Event]:
        """Yield normalized events for one run.

        Raises ProcessSpawnFailed before yielding anything if the binary
        cannot be started. Otherwise the stream always ends with exactly
        one Result.
        """
        adapter = get_adapter(command.backend)
        normalizer = self._normalizer(command, echo_prompt)
        stderr_tail = bytearray()

        outputs = self._launcher.run(command, timeout)
        try:
            async for item in outputs:
                if isinstance(item, OutputChunk):
                    if item.source is StreamSource.STDOUT:
                        for event in normalizer.push(adapter.feed(item.data)):
                            yield event
                    else:
                        stderr_tail.extend(item.data)
                        del stderr_tail[:-STDERR_TAIL_BYTES]
                        logger.debug(
                            "%s stderr: %s",
                            command.backend.value,
                            item.data.decode("utf-8", errors="replace").rstrip(),
                        )
                    continue

                for event in normalizer.push(adapter.finish()):
                    yield event
                for event in normalizer.close(item, stderr_tail.decode("utf-8", errors="replace")):
                    yield event
        finally:
            await outputs.aclose()

    async def run(
        self,
        command: ResolvedCommand,
        sink: Callable[[Event], None],
        timeout: float | None = None,
        echo_prompt: bool = False,
    ) -> Result:
        """Run to completion, handing every event to ``sink`` as it arrives.

        A spawn failure still produces a well-formed stream ending in a
        failed Result.
        """
        final: Result | None = None
        try:
            async for event in self.stream_events(command, timeout=timeout, echo_prompt=echo_prompt):
                sink(event)
                if isinstance(event, Result):
                    final = event
        except ProcessSpawnFailed as e:
            logger.debug("Spawn failed: %s", e)
            for event in self._normalizer(command, echo_prompt).spawn_failed(e):
                sink(event)
                if isinstance(event, Result):
                    final = event
        assert final is not None
        return final
