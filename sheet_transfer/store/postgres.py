from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import psycopg2
from psycopg2.extras import Json, execute_values

from ..models.job import JobStatus, TransferJob, TransferLog, TransferProgress

"""PostgreSQL job store (psycopg2).

Layout:
- ``transfer_jobs``: one row per job; status and progress in their own
  columns, everything else in a JSONB ``metadata`` payload
- ``transfer_job_logs``: append-only log entries, bulk-inserted with
  ``execute_values``

Each operation runs in its own transaction on the supplied connection.
"""

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS transfer_jobs (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    progress JSONB NOT NULL,
    metadata JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at TIMESTAMPTZ
);
CREATE TABLE IF NOT EXISTS transfer_job_logs (
    id BIGSERIAL PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES transfer_jobs(id) ON DELETE CASCADE,
    ts TIMESTAMPTZ NOT NULL,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    details JSONB
);
CREATE INDEX IF NOT EXISTS transfer_job_logs_job_id_idx ON transfer_job_logs(job_id, id);
"""

_RUNTIME_FIELDS = ("status", "progress", "logs", "completed_at")


class JobStoreError(Exception):
    pass


def _metadata(job: TransferJob) -> dict[str, Any]:
    return {k: v for k, v in job.to_dict().items() if k not in _RUNTIME_FIELDS}


class PostgresJobStore:
    def __init__(self, conn: Any) -> None:
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str) -> PostgresJobStore:
        try:
            return cls(psycopg2.connect(dsn))
        except psycopg2.Error as e:
            raise JobStoreError(f"could not connect to job database: {e}") from e

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()

    def _execute(self, sql: str, params: Sequence[Any] | None = None, *, fetch: bool = False) -> list[tuple[Any, ...]]:
        try:
            with self._conn:
                with self._conn.cursor() as cur:
                    cur.execute(sql, params)
                    return cur.fetchall() if fetch else []
        except psycopg2.Error as e:
            raise JobStoreError(f"job store query failed: {e}") from e

    def ensure_schema(self) -> None:
        self._execute(SCHEMA_SQL)

    def create(self, job: TransferJob) -> TransferJob:
        self._execute(
            "INSERT INTO transfer_jobs (id, status, progress, metadata, created_at) "
            "VALUES (%s, %s, %s, %s, %s)",
            (job.id, job.status.value, Json(job.progress.to_dict()), Json(_metadata(job)), job.created_at),
        )
        if job.logs:
            self.append_logs(job.id, job.logs)
        return job

    def get(self, job_id: str) -> TransferJob | None:
        rows = self._execute(
            "SELECT status, progress, metadata, completed_at FROM transfer_jobs WHERE id = %s",
            (job_id,),
            fetch=True,
        )
        if not rows:
            return None
        status, progress, metadata, completed_at = rows[0]
        logs = self._execute(
            "SELECT ts, level, message, details FROM transfer_job_logs WHERE job_id = %s ORDER BY id",
            (job_id,),
            fetch=True,
        )
        data = dict(metadata)
        data["status"] = status
        data["progress"] = progress
        data["completed_at"] = completed_at.isoformat() if completed_at is not None else None
        data["logs"] = [
            {"timestamp": ts.isoformat(), "level": level, "message": message, "details": details}
            for ts, level, message, details in logs
        ]
        return TransferJob.from_dict(data)

    def save(self, job: TransferJob) -> None:
        self._execute(
            "UPDATE transfer_jobs SET metadata = %s, updated_at = now() WHERE id = %s",
            (Json(_metadata(job)), job.id),
        )

    def update_status(
        self, job_id: str, status: JobStatus, progress: TransferProgress | None = None
    ) -> None:
        completed = "now()" if status.is_terminal else "NULL"
        if progress is None:
            self._execute(
                f"UPDATE transfer_jobs SET status = %s, updated_at = now(), "
                f"completed_at = COALESCE(completed_at, {completed}) WHERE id = %s",
                (status.value, job_id),
            )
        else:
            self._execute(
                f"UPDATE transfer_jobs SET status = %s, progress = %s, updated_at = now(), "
                f"completed_at = COALESCE(completed_at, {completed}) WHERE id = %s",
                (status.value, Json(progress.to_dict()), job_id),
            )

    def update_progress(self, job_id: str, progress: TransferProgress) -> None:
        self._execute(
            "UPDATE transfer_jobs SET progress = %s, updated_at = now() WHERE id = %s",
            (Json(progress.to_dict()), job_id),
        )

    def append_log(self, job_id: str, entry: TransferLog) -> None:
        self.append_logs(job_id, [entry])

    def append_logs(self, job_id: str, entries: Sequence[TransferLog]) -> None:
        values = [
            (job_id, e.timestamp, e.level, e.message, Json(e.details) if e.details is not None else None)
            for e in entries
        ]
        if not values:
            return
        try:
            with self._conn:
                with self._conn.cursor() as cur:
                    execute_values(
                        cur,
                        "INSERT INTO transfer_job_logs (job_id, ts, level, message, details) VALUES %s",
                        values,
                    )
        except psycopg2.Error as e:
            raise JobStoreError(f"job log insert failed: {e}") from e
