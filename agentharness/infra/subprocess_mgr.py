"""Subprocess launcher: spawn, stream, time out, kill and reap."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

from agentharness.errors import ProcessSpawnFailed
from agentharness.models.command import ResolvedCommand

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024
KILL_GRACE_SECS = 2.0


class StreamSource(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputChunk:
    """Raw bytes read from one of the child's output pipes."""

    source: StreamSource
    data: bytes


@dataclass(frozen=True)
class ExitOutcome:
    """How the child ended. Always the last item a run yields."""

    exit_code: int | None
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class SubprocessLauncher:
    """Runs one command per ``run()`` call and owns its process exclusively.

    The child is started in its own session so the whole process group can
    be signalled. The group is killed once the leader exits or times out,
    so descendants never outlive the call. Closing the ``run()`` generator
    early (or cancelling the task consuming it) also kills and reaps it.
    """

    def __init__(self, kill_grace: float = KILL_GRACE_SECS, read_size: int = READ_SIZE) -> None:
        self.kill_grace = kill_grace
        self.read_size = read_size

    async def run(
        self, command: ResolvedCommand, timeout: float | None = None
    ) -> AsyncIterator[OutputChunk | ExitOutcome]:
        started = time.monotonic()
        deadline = started + timeout if timeout else None
        proc = await self._spawn(command)
        logger.debug("Spawned %s (pid %s)", command.executable, proc.pid)

        queue: asyncio.Queue = asyncio.Queue()
        readers = [
            asyncio.create_task(self._pump(proc.stdout, StreamSource.STDOUT, queue)),
            asyncio.create_task(self._pump(proc.stderr, StreamSource.STDERR, queue)),
        ]
        waiter = asyncio.create_task(self._wait_exit(proc, queue))
        tasks = [*readers, waiter]
        if command.stdin_payload is not None:
            tasks.append(asyncio.create_task(self._feed_stdin(proc, command.stdin_payload)))

        timed_out = False
        try:
            # Runs until the leader exits; descendants holding the pipes do not count.
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), _remaining(deadline))
                except asyncio.TimeoutError:
                    timed_out = True
                    break
                if item is _EXITED:
                    break
                yield item

            if timed_out:
                logger.warning("Process %s timed out after %ss; terminating", proc.pid, timeout)
            await self._kill_group(proc, waiter, readers)
            while not queue.empty():
                item = queue.get_nowait()
                if item is not _EXITED:
                    yield item

            duration_ms = int((time.monotonic() - started) * 1000)
            logger.debug("Process %s exited with %s after %dms", proc.pid, proc.returncode, duration_ms)
            yield ExitOutcome(exit_code=proc.returncode, timed_out=timed_out, duration_ms=duration_ms)
        finally:
            # The group is killed on every path, including early close.
            await self._kill_group(proc, waiter, readers)
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _spawn(self, command: ResolvedCommand) -> asyncio.subprocess.Process:
        env = {**os.environ, **command.env} if command.env else None
        stdin = asyncio.subprocess.PIPE if command.stdin_payload is not None else asyncio.subprocess.DEVNULL
        try:
            return await asyncio.create_subprocess_exec(
                command.executable,
                *command.args,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=command.cwd,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise ProcessSpawnFailed(command.executable, "binary not found") from e
        except PermissionError as e:
            raise ProcessSpawnFailed(command.executable, "permission denied") from e
        except OSError as e:
            raise ProcessSpawnFailed(command.executable, str(e)) from e

    async def _pump(
        self, stream: asyncio.StreamReader | None, source: StreamSource, queue: asyncio.Queue
    ) -> None:
        if stream is None:
            return
        while True:
            data = await stream.read(self.read_size)
            if not data:
                break
            queue.put_nowait(OutputChunk(source, data))

    @staticmethod
    async def _wait_exit(proc: asyncio.subprocess.Process, queue: asyncio.Queue) -> None:
        await proc.wait()
        queue.put_nowait(_EXITED)

    @staticmethod
    async def _feed_stdin(proc: asyncio.subprocess.Process, payload: str) -> None:
        if proc.stdin is None:
            return
        try:
            proc.stdin.write(payload.encode())
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Process %s closed stdin before the prompt was written", proc.pid)
        finally:
            proc.stdin.close()

    async def _kill_group(
        self, proc: asyncio.subprocess.Process, waiter: asyncio.Task, readers: list[asyncio.Task]
    ) -> None:
        """SIGTERM the group, wait out the grace period, then SIGKILL and reap.

        The leader may already be gone; anything still running in its group,
        or still holding its pipes open, is killed the same way.
        """
        _signal_group(proc, signal.SIGTERM)
        pending = [task for task in (waiter, *readers) if not task.done()]
        if pending:
            _, pending = await asyncio.wait(pending, timeout=self.kill_grace)
        if pending:
            logger.warning("Process group %s ignored SIGTERM; sending SIGKILL", proc.pid)
            _signal_group(proc, signal.SIGKILL)
            await proc.wait()
        await self._settle(readers)

    async def _settle(self, readers: list[asyncio.Task]) -> None:
        """Let readers finish pushing what the pipes still hold."""
        pending = [task for task in readers if not task.done()]
        if not pending:
            return
        _, pending = await asyncio.wait(pending, timeout=self.kill_grace)
        for task in pending:
            task.cancel()


_EXITED = object()


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        if proc.returncode is None:
            proc.send_signal(sig)
