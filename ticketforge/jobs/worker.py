"""Background worker: drives a job from ``pending`` to ``done``/``error``.

``JobRunner.run`` is the per-job procedure. It catches every failure and always
leaves the job terminal; it only re-raises ``CancelledError`` after recording
the interruption. ``WorkerPool`` runs it on a fixed number of asyncio workers
fed by a bounded queue, with drain-then-cancel shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ticketforge.cache import ResponseCache
from ticketforge.engine import GenerationOptions, InvocationEngine
from ticketforge.errors import InvocationError, ServiceBusyError, TicketForgeError
from ticketforge.jobs.models import ACTIVE_STATUSES, Job, JobStatus
from ticketforge.jobs.store import JobStore
from ticketforge.tickets import (
    SYSTEM_PROMPT,
    build_ticket_prompt,
    determine_responsible,
    ensure_responsible,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Erro interno ao processar o ticket."
SHUTDOWN_MESSAGE = "Processamento interrompido: o servidor foi reiniciado. Tente novamente."

_PROCESSING = frozenset({JobStatus.PROCESSING})


class JobSuperseded(Exception):
    """The job left ``processing`` under us (e.g. the client marked it as timed out)."""


class JobRunner:
    def __init__(
        self,
        store: JobStore,
        cache: ResponseCache,
        engine: InvocationEngine,
        *,
        options: GenerationOptions | None = None,
        cache_hit_delay: float = 1.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._store = store
        self._cache = cache
        self._engine = engine
        self._options = options or GenerationOptions()
        self._cache_hit_delay = cache_hit_delay
        self._sleep = sleep

    async def _update(self, job_id: str, from_statuses=_PROCESSING, **changes: Any) -> Job:
        job = await asyncio.to_thread(
            self._store.update, job_id, from_statuses=from_statuses, **changes
        )
        if job is None:
            raise JobSuperseded(job_id)
        return job

    async def _checkpoint(self, job_id: str, progress: int, message: str) -> None:
        await self._update(job_id, progress_percent=progress, message=message)

    async def run(self, job_id: str) -> None:
        try:
            job = await self._update(
                job_id,
                from_statuses={JobStatus.PENDING},
                status=JobStatus.PROCESSING,
                progress_percent=10,
                message="Gerando ticket com IA...",
            )
        except JobSuperseded:
            logger.info("Job %s is no longer pending, skipping", job_id)
            return

        logger.info("Processing job %s (scope=%s)", job_id, job.scope)
        try:
            await self._process(job)
        except JobSuperseded:
            logger.info("Job %s was finalized externally while processing", job_id)
        except InvocationError as e:
            logger.warning("Job %s failed: %s", job_id, e)
            await self._fail(job_id, e.user_message, f"{e.kind.value}: {(e.detail or '')[:200]}")
        except TicketForgeError as e:
            logger.warning("Job %s failed: %s (%s)", job_id, e.error_type, e.detail)
            await self._fail(job_id, e.user_message, e.error_type)
        except asyncio.CancelledError:
            logger.warning("Job %s interrupted by shutdown", job_id)
            await asyncio.shield(self._fail(job_id, SHUTDOWN_MESSAGE, "cancelled"))
            raise
        except Exception as e:
            logger.exception("Unexpected failure processing job %s", job_id)
            await self._fail(job_id, INTERNAL_ERROR_MESSAGE, type(e).__name__)

    async def _fail(self, job_id: str, message: str, detail: str) -> None:
        try:
            await asyncio.to_thread(
                self._store.update,
                job_id,
                from_statuses=ACTIVE_STATUSES,
                status=JobStatus.ERROR,
                message=message,
                error_detail=detail,
            )
        except Exception:
            logger.exception("Could not record failure of job %s", job_id)

    async def _process(self, job: Job) -> None:
        cached = self._cache.lookup(job.scope, job.request_text)
        if cached is not None:
            logger.info("Job %s served from cache", job.id)
            # Deliberate pause so a cache hit still reads as generation
            await self._sleep(self._cache_hit_delay)
            await self._checkpoint(job.id, 50, "Recuperando ticket do cache...")
            await self._update(
                job.id,
                status=JobStatus.DONE,
                result=cached,
                progress_percent=100,
                message="Ticket gerado com sucesso (cache)",
                metadata={"source": "cache"},
            )
            return

        responsible = determine_responsible(job.request_text)
        logger.info("Job %s routed to %s", job.id, responsible)
        await self._checkpoint(job.id, 20, "Analisando solicitação...")
        prompt = build_ticket_prompt(job.scope, job.request_text, responsible)
        await self._checkpoint(job.id, 40, "Gerando conteúdo do ticket...")
        await self._checkpoint(job.id, 60, "Processando com IA...")

        result = await self._engine.generate(prompt, SYSTEM_PROMPT, self._options)

        await self._checkpoint(job.id, 80, "Finalizando geração...")
        content = ensure_responsible(result.content, responsible)
        self._cache.insert(job.scope, job.request_text, content)
        await self._update(
            job.id,
            status=JobStatus.DONE,
            result=content,
            progress_percent=100,
            message="Ticket gerado com sucesso",
            metadata={
                "source": "model",
                "model": result.model_used,
                "tokens_used": result.tokens_used,
                "attempts": len(result.attempts),
            },
        )
        logger.info("Job %s done (model=%s)", job.id, result.model_used)


@dataclass
class PoolStats:
    workers: int
    queued: int
    queue_capacity: int
    in_flight: int
    running: bool


class WorkerPool:
    """Fixed-size asyncio worker pool over a bounded submission queue."""

    def __init__(
        self,
        runner: JobRunner,
        store: JobStore,
        *,
        concurrency: int = 4,
        queue_size: int = 100,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._runner = runner
        self._store = store
        self._concurrency = concurrency
        self._queue: asyncio.Queue[str] | None = None
        self._queue_size = queue_size
        self._workers: list[asyncio.Task] = []
        self._in_flight = 0
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._accepting

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"ticket-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("Worker pool started (%d workers, queue=%d)", self._concurrency, self._queue_size)

    def submit(self, job_id: str) -> None:
        if not self._accepting or self._queue is None:
            raise ServiceBusyError("O serviço está sendo encerrado.", detail="pool not running")
        try:
            self._queue.put_nowait(job_id)
        except asyncio.QueueFull:
            raise ServiceBusyError(
                "Fila de processamento cheia. Tente novamente em instantes.",
                detail=f"queue capacity {self._queue_size} reached",
            )

    async def _worker_loop(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            self._in_flight += 1
            try:
                await self._runner.run(job_id)
            except Exception:
                # run() never raises by contract; keep the worker alive regardless
                logger.exception("Worker %d crashed on job %s", index, job_id)
            finally:
                self._in_flight -= 1
                self._queue.task_done()

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Stop accepting, drain the queue for up to ``grace_seconds``, then cancel."""
        self._accepting = False
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Worker pool did not drain within %.1fs, cancelling", grace_seconds)
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        abandoned = []
        while not self._queue.empty():
            abandoned.append(self._queue.get_nowait())
            self._queue.task_done()
        for job_id in abandoned:
            await asyncio.to_thread(
                self._store.update,
                job_id,
                from_statuses=ACTIVE_STATUSES,
                status=JobStatus.ERROR,
                message=SHUTDOWN_MESSAGE,
                error_detail="shutdown",
            )
        logger.info("Worker pool stopped (%d queued jobs marked as error)", len(abandoned))

    def stats(self) -> PoolStats:
        return PoolStats(
            workers=len(self._workers),
            queued=self._queue.qsize() if self._queue is not None else 0,
            queue_capacity=self._queue_size,
            in_flight=self._in_flight,
            running=self._accepting,
        )
