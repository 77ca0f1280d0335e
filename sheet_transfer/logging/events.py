from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, Sequence

from ..models.job import TransferLog

"""Structured transfer events and the sinks that receive them.

The orchestrator and the image pipeline emit one TransferEvent per notable
step to a single injected sink. Tests capture events with RecordingEventSink;
production composes LoggingEventSink (console) with JobLogSink (persisted job
log) and optionally JsonLinesEventSink (file).

JSON Lines records use a fixed key set (see contracts/event_log_schema.json):
``timestamp, job_id, level, kind, message, details``.
"""

__all__ = [
    "CompositeEventSink",
    "EventSink",
    "JobLogSink",
    "JsonLinesEventSink",
    "LoggingEventSink",
    "NullEventSink",
    "RecordingEventSink",
    "TransferEvent",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class TransferEvent:
    job_id: str
    level: str  # debug | info | success | warn | error
    kind: str  # e.g. header_detected, batch_inserted, image_fallback
    message: str
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "job_id": self.job_id,
            "level": self.level,
            "kind": self.kind,
            "message": self.message,
            "details": self.details or {},
        }

    def to_json_line(self) -> str:
        return json.dumps(self.to_record(), ensure_ascii=False, default=str)

    def to_log(self) -> TransferLog:
        return TransferLog(
            timestamp=self.timestamp,
            level=self.level,
            message=self.message,
            details={"kind": self.kind, **(self.details or {})},
        )


class EventSink(Protocol):
    def emit(self, event: TransferEvent) -> None:
        ...


class NullEventSink:
    def emit(self, event: TransferEvent) -> None:
        return None


class RecordingEventSink:
    """Keeps every event in memory (test double)."""

    def __init__(self) -> None:
        self.events: list[TransferEvent] = []

    def emit(self, event: TransferEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list[TransferEvent]:
        return [e for e in self.events if e.kind == kind]


class LoggingEventSink:
    """Forwards events to the standard logging tree."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("sheet_transfer.events")

    def emit(self, event: TransferEvent) -> None:
        level = _LEVELS.get(event.level, logging.INFO)
        self._logger.log(level, f"[{event.job_id[:8]}] {event.message}")


class JobLogSink:
    """Appends events to the job's persisted log (debug events are skipped)."""

    def __init__(self, store: Any) -> None:
        self._store = store

    def emit(self, event: TransferEvent) -> None:
        if event.level == "debug":
            return
        try:
            self._store.append_log(event.job_id, event.to_log())
        except Exception as e:
            # ログ永続化失敗でジョブは止めない
            logging.getLogger(__name__).warning(f"failed to persist job log entry: {e}")


class CompositeEventSink:
    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event: TransferEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


class JsonLinesEventSink:
    """In-memory buffer of events. flush() appends JSON Lines to a file.

    - The file path is decided on first access (``logs/transfer-YYYYMMDD-HHMMSS.log``, UTC)
    - Not thread safe; one sink per job flow
    """

    def __init__(self, min_level: str = "info", logs_dir: Path | None = None) -> None:
        self._records: list[TransferEvent] = []
        self._file_path: Path | None = None
        self._min_level = _LEVELS.get(min_level, logging.INFO)
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"transfer-{stamp}.log"
        return self._file_path

    def emit(self, event: TransferEvent) -> None:
        if _LEVELS.get(event.level, logging.INFO) >= self._min_level:
            self._records.append(event)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path:
        if not self._records:
            return self.file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
