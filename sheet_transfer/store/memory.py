from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from ..models.job import JobStatus, TransferJob, TransferLog, TransferProgress

"""In-process job store.

Records are kept in their serialized (``to_dict``) form so callers never share
mutable state with the store; ``get`` always returns a fresh TransferJob.
"""

# save() never touches these: they change only through the dedicated updates
_RUNTIME_FIELDS = ("status", "progress", "logs", "completed_at")


class InMemoryJobStore:
    def __init__(self) -> None:
        self._jobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _record(self, job_id: str) -> dict[str, Any]:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"unknown job id: {job_id}") from None

    def create(self, job: TransferJob) -> TransferJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job already exists: {job.id}")
            self._jobs[job.id] = job.to_dict()
        return job

    def get(self, job_id: str) -> TransferJob | None:
        with self._lock:
            data = self._jobs.get(job_id)
            return TransferJob.from_dict(data) if data is not None else None

    def list_jobs(self) -> list[TransferJob]:
        with self._lock:
            jobs = [TransferJob.from_dict(d) for d in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at)

    def save(self, job: TransferJob) -> None:
        data = job.to_dict()
        with self._lock:
            record = self._record(job.id)
            for key, value in data.items():
                if key not in _RUNTIME_FIELDS:
                    record[key] = value

    def update_status(
        self, job_id: str, status: JobStatus, progress: TransferProgress | None = None
    ) -> None:
        with self._lock:
            record = self._record(job_id)
            record["status"] = status.value
            if progress is not None:
                record["progress"] = progress.to_dict()
            if status.is_terminal and record.get("completed_at") is None:
                record["completed_at"] = datetime.now(UTC).isoformat()

    def update_progress(self, job_id: str, progress: TransferProgress) -> None:
        with self._lock:
            self._record(job_id)["progress"] = progress.to_dict()

    def append_log(self, job_id: str, entry: TransferLog) -> None:
        with self._lock:
            self._record(job_id).setdefault("logs", []).append(entry.to_dict())
