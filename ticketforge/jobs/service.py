"""Job submission interface: submit, poll, client timeout override, stale recovery."""

from __future__ import annotations

import logging
from datetime import timedelta

from ticketforge.errors import JobNotFoundError, ServiceBusyError
from ticketforge.jobs.models import ACTIVE_STATUSES, Job, JobStatus, new_job_id, utcnow
from ticketforge.jobs.store import JobStore
from ticketforge.jobs.worker import WorkerPool
from ticketforge.schemas import GenerationRequest, validate_generation_request

logger = logging.getLogger(__name__)

CLIENT_TIMEOUT_MESSAGE = "Tempo limite excedido. O processamento demorou mais que o esperado."
STALE_MESSAGE = "O processamento foi interrompido e não pôde ser concluído. Tente novamente."


class JobService:
    def __init__(self, store: JobStore, pool: WorkerPool | None):
        self._store = store
        self._pool = pool

    def submit_job(self, request: GenerationRequest) -> Job:
        """Create a ``pending`` job and queue it; returns without waiting for generation."""
        validate_generation_request(request)
        job = Job(
            id=new_job_id(),
            scope=request.scope,
            request_text=request.request_text,
            status=JobStatus.PENDING,
            message="Ticket adicionado à fila de processamento",
        )
        self._store.create(job)
        try:
            if self._pool is None:
                raise ServiceBusyError("Processamento indisponível.", detail="no worker pool")
            self._pool.submit(job.id)
        except ServiceBusyError as e:
            self._store.update(
                job.id,
                from_statuses={JobStatus.PENDING},
                status=JobStatus.ERROR,
                message=e.user_message,
                error_detail="queue_full",
            )
            raise
        logger.info("Job %s queued (scope=%s)", job.id, job.scope)
        return job

    def get_job_status(self, job_id: str) -> Job:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def mark_job_timeout(self, job_id: str) -> Job:
        """Client gave up. Compare-and-set from an active status; terminal jobs are left untouched."""
        updated = self._store.update(
            job_id,
            from_statuses=ACTIVE_STATUSES,
            status=JobStatus.ERROR,
            message=CLIENT_TIMEOUT_MESSAGE,
            error_detail="timeout",
            metadata={"error_type": "timeout", "reported_by": "client"},
        )
        if updated is not None:
            logger.info("Job %s marked as timed out by client", job_id)
            return updated
        job = self.get_job_status(job_id)
        logger.info("Timeout override ignored for job %s (already %s)", job_id, job.status.value)
        return job

    def recover_stale_jobs(self, older_than_seconds: float | None = None) -> list[str]:
        """Move abandoned jobs to ``error``.

        With ``older_than_seconds=None`` every active job is considered
        abandoned (used at startup, when no worker of this process owns any).
        With a cutoff only ``processing`` jobs untouched since then are
        recovered; ``pending`` jobs are still waiting in the queue.
        """
        cutoff = None
        statuses = ACTIVE_STATUSES
        if older_than_seconds is not None:
            cutoff = utcnow() - timedelta(seconds=older_than_seconds)
            statuses = frozenset({JobStatus.PROCESSING})
        recovered = []
        for job in self._store.list_active(updated_before=cutoff):
            if job.status not in statuses:
                continue
            updated = self._store.update(
                job.id,
                from_statuses=statuses,
                status=JobStatus.ERROR,
                message=STALE_MESSAGE,
                error_detail="stale",
            )
            if updated is not None:
                recovered.append(job.id)
        if recovered:
            logger.warning("Recovered %d stale job(s): %s", len(recovered), ", ".join(recovered))
        return recovered
