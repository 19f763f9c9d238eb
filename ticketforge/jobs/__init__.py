"""Generation job storage, background processing and submission."""

from ticketforge.jobs.models import Job, JobStatus, new_job_id
from ticketforge.jobs.service import JobService
from ticketforge.jobs.store import FileJobStore, JobStore, PostgresJobStore, create_job_store
from ticketforge.jobs.worker import JobRunner, WorkerPool

__all__ = [
    "FileJobStore",
    "Job",
    "JobRunner",
    "JobService",
    "JobStatus",
    "JobStore",
    "PostgresJobStore",
    "WorkerPool",
    "create_job_store",
    "new_job_id",
]
