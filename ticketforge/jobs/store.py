"""Job storage: Postgres (preferred) or a file-based fallback.

Both backends implement updates as compare-and-set on the current status, so a
terminal job can never be downgraded, and clamp ``progress_percent`` so it
never moves backwards.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from ticketforge.config import Settings
from ticketforge.jobs.models import ACTIVE_STATUSES, MUTABLE_FIELDS, Job, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    backend_name: str

    def create(self, job: Job) -> Job: ...
    def get(self, job_id: str) -> Job | None: ...
    def update(
        self, job_id: str, *, from_statuses: Iterable[JobStatus], **changes: Any
    ) -> Job | None: ...
    def list_active(self, updated_before: datetime | None = None) -> list[Job]: ...


def _check_changes(from_statuses: frozenset[JobStatus], changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Immutable or unknown job fields: {sorted(unknown)}")
    target = changes.get("status")
    if target is not None:
        target = JobStatus(target)
        illegal = [s.value for s in from_statuses if not s.can_become(target)]
        if illegal:
            raise ValueError(f"Illegal transition {illegal} -> {target.value}")


def apply_changes(job: Job, from_statuses: frozenset[JobStatus], changes: dict[str, Any]) -> Job | None:
    """Return the updated copy of ``job``, or None when the status precondition fails."""
    if job.status not in from_statuses:
        return None
    data = dict(changes)
    if "progress_percent" in data:
        data["progress_percent"] = max(job.progress_percent, int(data["progress_percent"]))
    data["updated_at"] = utcnow()
    return job.model_copy(update=data)


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_COLUMNS = (
    "id, scope, request_text, status, message, progress_percent, result, "
    "error_detail, metadata, created_at, updated_at"
)


class PostgresJobStore:
    """Persist jobs in Postgres. Survives restarts."""

    backend_name = "postgres"

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'ticketforge[postgres]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tf_ticket_jobs (
                id TEXT PRIMARY KEY,
                scope TEXT NOT NULL,
                request_text TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT NOT NULL DEFAULT '',
                progress_percent INT NOT NULL DEFAULT 0,
                result TEXT,
                error_detail TEXT,
                metadata JSONB,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_tf_ticket_jobs_active
            ON tf_ticket_jobs (status, updated_at)
        """)
        return conn

    def create(self, job: Job) -> Job:
        self._conn.execute(
            f"""
            INSERT INTO tf_ticket_jobs ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
            """,
            (
                job.id,
                job.scope,
                job.request_text,
                job.status.value,
                job.message,
                job.progress_percent,
                job.result,
                job.error_detail,
                json.dumps(job.metadata) if job.metadata is not None else None,
                job.created_at,
                job.updated_at,
            ),
        )
        return job

    def get(self, job_id: str) -> Job | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM tf_ticket_jobs WHERE id = %s", (job_id,)
        ).fetchone()
        return self._row_to_job(row) if row else None

    def update(self, job_id: str, *, from_statuses: Iterable[JobStatus], **changes: Any) -> Job | None:
        allowed = frozenset(from_statuses)
        _check_changes(allowed, changes)
        assignments: list[str] = []
        params: list[Any] = []
        for name, value in changes.items():
            if name == "progress_percent":
                assignments.append("progress_percent = GREATEST(progress_percent, %s)")
                params.append(int(value))
            elif name == "metadata":
                assignments.append("metadata = %s::jsonb")
                params.append(json.dumps(value) if value is not None else None)
            elif name == "status":
                assignments.append("status = %s")
                params.append(JobStatus(value).value)
            else:
                assignments.append(f"{name} = %s")
                params.append(value)
        assignments.append("updated_at = NOW()")
        params.extend([job_id, [s.value for s in allowed]])
        row = self._conn.execute(
            f"""
            UPDATE tf_ticket_jobs SET {", ".join(assignments)}
            WHERE id = %s AND status = ANY(%s)
            RETURNING {_COLUMNS}
            """,
            params,
        ).fetchone()
        return self._row_to_job(row) if row else None

    def list_active(self, updated_before: datetime | None = None) -> list[Job]:
        query = f"SELECT {_COLUMNS} FROM tf_ticket_jobs WHERE status = ANY(%s)"
        params: list[Any] = [[s.value for s in ACTIVE_STATUSES]]
        if updated_before is not None:
            query += " AND updated_at < %s"
            params.append(updated_before)
        rows = self._conn.execute(query + " ORDER BY created_at", params).fetchall()
        return [self._row_to_job(r) for r in rows]

    def _row_to_job(self, row) -> Job:
        metadata = row[8]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return Job(
            id=row[0],
            scope=row[1],
            request_text=row[2],
            status=JobStatus(row[3]),
            message=row[4] or "",
            progress_percent=row[5],
            result=row[6],
            error_detail=row[7],
            metadata=metadata,
            created_at=row[9],
            updated_at=row[10],
        )


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobStore:
    """Persist jobs as JSON files. Survives restarts within same data dir.

    Single-process only: compare-and-set is guarded by an in-process lock.
    """

    backend_name = "file"

    def __init__(self, jobs_dir: Path):
        self._dir = Path(jobs_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _job_path(self, job_id: str) -> Path:
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self._dir / f"{job_id}.json"

    def create(self, job: Job) -> Job:
        with self._lock:
            self._write_job(job)
        return job

    def get(self, job_id: str) -> Job | None:
        try:
            path = self._job_path(job_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        return self._read_job(path)

    def update(self, job_id: str, *, from_statuses: Iterable[JobStatus], **changes: Any) -> Job | None:
        allowed = frozenset(from_statuses)
        _check_changes(allowed, changes)
        with self._lock:
            job = self.get(job_id)
            if job is None:
                return None
            updated = apply_changes(job, allowed, changes)
            if updated is not None:
                self._write_job(updated)
            return updated

    def list_active(self, updated_before: datetime | None = None) -> list[Job]:
        jobs = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                job = self._read_job(path)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable job file %s: %s", path.name, e)
                continue
            if job.status not in ACTIVE_STATUSES:
                continue
            if updated_before is not None and job.updated_at >= updated_before:
                continue
            jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at)

    def _write_job(self, job: Job) -> None:
        path = self._job_path(job.id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(job.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)

    def _read_job(self, path: Path) -> Job:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return Job.model_validate(data)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_job_store(settings: Settings) -> JobStore:
    """Postgres if configured, else file-based."""
    if settings.tf_database_url:
        try:
            store = PostgresJobStore(settings.tf_database_url)
            logger.info("Using Postgres job store")
            return store
        except Exception as e:
            logger.warning("Postgres job store failed (%s), falling back to file store", e)
            settings.jobs_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Using file-based job store (%s)", settings.jobs_dir)
    return FileJobStore(settings.jobs_dir)
