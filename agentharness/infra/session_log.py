"""Per-run NDJSON session log on disk."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from agentharness.models.event import Event, Result, SessionStart

logger = logging.getLogger(__name__)


class SessionLogger:
    """Tees normalized events to ``<dir>/<session_id>.ndjson``.

    Events go to a ``.ndjson.tmp`` file that is renamed into place when the
    Result arrives, so a crashed run leaves only the ``.tmp`` behind.
    Write failures are logged and never interrupt the run.
    """

    def __init__(self, directory: Path, prompt: str = "") -> None:
        self.directory = directory
        self.prompt = prompt
        self._file: TextIO | None = None
        self._start: SessionStart | None = None
        self._started_at = datetime.now(timezone.utc)
        self.path: Path | None = None
        self.meta_path: Path | None = None

    def __call__(self, event: Event) -> None:
        self.log_event(event)

    def log_event(self, event: Event) -> None:
        if self._file is None and self._start is None and isinstance(event, SessionStart):
            self._open(event)
        if self._file is None:
            return
        try:
            self._file.write(json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Failed to write session log: %s", e)
        if isinstance(event, Result):
            self.finalize(event)

    def _open(self, start: SessionStart) -> None:
        self._start = start
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._file = open(self._tmp_path, "w", encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot create session log in %s: %s", self.directory, e)
            self._file = None

    @property
    def _tmp_path(self) -> Path:
        assert self._start is not None
        return self.directory / f"{self._start.session_id}.ndjson.tmp"

    def finalize(self, result: Result) -> None:
        if self._file is None or self._start is None:
            return
        session_id = self._start.session_id
        final_path = self.directory / f"{session_id}.ndjson"
        meta_path = self.directory / f"{session_id}.meta.json"
        meta = {
            "session_id": session_id,
            "backend": self._start.backend,
            "model": self._start.model,
            "cwd": self._start.cwd,
            "prompt": self.prompt,
            "start_time": self._started_at.isoformat(),
            "duration_ms": result.duration_ms,
            "success": result.success,
            "exit_code": result.exit_code,
            "total_cost_usd": result.total_cost_usd,
        }
        try:
            self._file.close()
            os.replace(self._tmp_path, final_path)
            meta_path.write_text(json.dumps(meta, indent=2))
        except OSError as e:
            logger.warning("Failed to finalize session log %s: %s", final_path, e)
            return
        finally:
            self._file = None
        self.path = final_path
        self.meta_path = meta_path
        logger.debug("Session log written to %s", final_path)
