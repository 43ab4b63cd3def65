# logs.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

ORCHESTRATION_IMAGE = "bazooka/orchestration"


@dataclass(frozen=True)
class LogEntry:
    """Metadata attached to every persisted log line."""
    project_id: str
    job_id: str
    variant_id: str | None = None
    image: str = ""


class LogWriter(Protocol):
    def add_log(self, entry: LogEntry, message: str) -> None: ...


class LogFeed:
    """Background consumer of one log stream."""

    def __init__(self, lines: Iterable[str], entry: LogEntry, writer: LogWriter):
        self.entry = entry
        self.error: BaseException | None = None
        self._lines = lines
        self._writer = writer
        self._thread = threading.Thread(
            target=self._pump,
            name=f"logs-{entry.image or 'job'}",
            daemon=True,
        )

    def start(self) -> "LogFeed":
        self._thread.start()
        return self

    def _pump(self) -> None:
        try:
            for line in self._lines:
                self._writer.add_log(self.entry, line)
        except Exception as e:
            # a broken log stream must not hide the container outcome
            self.error = e
            logger.warning("log stream for %s ended with error: %s", self.entry.image, e)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)


class LogSink:
    """Feeds container output into a LogWriter (normally the job store)."""

    def __init__(self, writer: LogWriter):
        self.writer = writer

    def feed(self, lines: Iterable[str], entry: LogEntry) -> LogFeed:
        return LogFeed(lines, entry, self.writer).start()


class JobLogHandler(logging.Handler):
    """Forwards the orchestrator's own log records to the job log."""

    def __init__(self, writer: LogWriter, project_id: str, job_id: str):
        super().__init__()
        self.writer = writer
        self.entry = LogEntry(project_id=project_id, job_id=job_id, image=ORCHESTRATION_IMAGE)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.writer.add_log(self.entry, self.format(record))
        except Exception:
            self.handleError(record)
