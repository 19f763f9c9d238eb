"""Client Coordinator: drives one generation against the HTTP API.

Two modes, both bounded by a single global deadline:

* polling: submit a job, poll its status at a fixed interval; on deadline,
  tell the server to mark the job as timed out so it is not left orphaned
* streaming: read the live stream with a per-read timeout and an independent
  stall watchdog; a stream that dies after enough content arrived is kept as
  an annotated partial result. Failed attempts (5xx, broken connection) are
  retried with linear backoff while the deadline allows.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ticketforge.deadline import Deadline
from ticketforge.errors import DeadlineExceeded, TicketForgeError
from ticketforge.tickets import is_partial, mark_partial

logger = logging.getLogger(__name__)


class ClientError(TicketForgeError):
    """Base class for failures seen by the client."""


class ClientTimeoutError(ClientError):
    status_code = 504
    error_type = "client_timeout"

    def __init__(self, detail: str | None = None, *, job_id: str | None = None):
        super().__init__("Tempo limite excedido. O processamento demorou mais que o esperado.", detail=detail)
        self.job_id = job_id


class GenerationFailedError(ClientError):
    """The server reported a failure (error response or job in ``error``)."""

    error_type = "generation_failed"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
        retryable: bool = False,
        job_id: str | None = None,
    ):
        super().__init__(message, detail=error_type)
        if status_code is not None:
            self.status_code = status_code
        if error_type:
            self.error_type = error_type
        self.retryable = retryable
        self.job_id = job_id


@dataclass
class ClientResult:
    content: str
    mode: str
    partial: bool = False
    job_id: str | None = None
    attempts: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _StreamProgress:
    last_chunk_at: float
    parts: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "".join(self.parts)


def _error_from_response(response: httpx.Response, body: bytes | None = None) -> GenerationFailedError:
    """Build an error from a non-2xx response (JSON envelope or plain text)."""
    raw = body if body is not None else response.content
    message, error_type = "", None
    try:
        payload = json.loads(raw)
    except ValueError:
        message = raw.decode("utf-8", errors="replace").strip()
    else:
        if isinstance(payload, dict):
            message = str(payload.get("error") or payload.get("detail") or "")
            details = payload.get("details")
            if isinstance(details, dict):
                error_type = details.get("type")
    status = response.status_code
    return GenerationFailedError(
        message or f"HTTP {status}",
        status_code=status,
        error_type=error_type,
        retryable=status >= 500 and status != 504,
    )


class TicketClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        http_client: httpx.AsyncClient | None = None,
        global_timeout: float = 120.0,
        poll_interval: float = 2.0,
        read_timeout: float = 8.0,
        stall_timeout: float = 10.0,
        stall_check_interval: float = 3.0,
        min_partial_length: int = 100,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=30.0)
        self.global_timeout = global_timeout
        self.poll_interval = poll_interval
        self.read_timeout = read_timeout
        self.stall_timeout = stall_timeout
        self.stall_check_interval = stall_check_interval
        self.min_partial_length = min_partial_length
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._clock = clock

    async def __aenter__(self) -> TicketClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _deadline(self) -> Deadline:
        return Deadline(self.global_timeout, clock=self._clock, label="client deadline")

    # ------------------------------------------------------------------
    # Raw API calls
    # ------------------------------------------------------------------

    async def submit(self, scope: str, request_text: str) -> str:
        response = await self._http.post(
            "/api/submit-job", json={"scope": scope, "requestText": request_text}
        )
        if response.is_error:
            raise _error_from_response(response)
        return response.json()["jobId"]

    async def get_status(self, job_id: str) -> dict[str, Any]:
        response = await self._http.get("/api/job-status", params={"jobId": job_id})
        if response.is_error:
            raise _error_from_response(response)
        return response.json()

    async def mark_timeout(self, job_id: str) -> dict[str, Any]:
        response = await self._http.post("/api/mark-job-timeout", params={"jobId": job_id})
        if response.is_error:
            raise _error_from_response(response)
        return response.json()

    # ------------------------------------------------------------------
    # Polling mode
    # ------------------------------------------------------------------

    async def generate_polling(self, scope: str, request_text: str) -> ClientResult:
        deadline = self._deadline()
        try:
            job_id = await deadline.run(self.submit(scope, request_text))
        except DeadlineExceeded as e:
            raise ClientTimeoutError(e.detail) from e
        logger.info("Submitted job %s, polling every %.1fs", job_id, self.poll_interval)

        try:
            while True:
                job = await deadline.run(self.get_status(job_id))
                status = job.get("status")
                if status == "done":
                    return ClientResult(
                        content=job.get("result") or "",
                        mode="polling",
                        job_id=job_id,
                        metadata=job.get("metadata") or {},
                    )
                if status == "error":
                    raise GenerationFailedError(
                        job.get("message") or "Erro ao gerar o ticket.",
                        error_type=job.get("errorDetail"),
                        job_id=job_id,
                    )
                await deadline.sleep(self.poll_interval)
        except DeadlineExceeded:
            pass

        return await self._give_up(job_id)

    async def _give_up(self, job_id: str) -> ClientResult:
        """Deadline hit: ask the server to mark the job as timed out.

        The override is a no-op on finished jobs; if the job completed in the
        meantime its result is returned instead of failing.
        """
        logger.warning("Job %s exceeded the client deadline, marking as timed out", job_id)
        try:
            marked = await asyncio.wait_for(self.mark_timeout(job_id), timeout=self.read_timeout)
        except (httpx.HTTPError, ClientError, asyncio.TimeoutError) as e:
            logger.warning("Could not mark job %s as timed out: %r", job_id, e)
            raise ClientTimeoutError("global deadline exceeded", job_id=job_id) from e
        if marked.get("status") == "done":
            job = await asyncio.wait_for(self.get_status(job_id), timeout=self.read_timeout)
            return ClientResult(
                content=job.get("result") or "",
                mode="polling",
                job_id=job_id,
                metadata=job.get("metadata") or {},
            )
        raise ClientTimeoutError("global deadline exceeded", job_id=job_id)

    # ------------------------------------------------------------------
    # Streaming mode
    # ------------------------------------------------------------------

    async def generate_streaming(self, scope: str, request_text: str) -> ClientResult:
        deadline = self._deadline()
        payload = {"scope": scope, "requestText": request_text}
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._stream_once(payload, deadline)
            except GenerationFailedError as e:
                if not e.retryable or attempt > self.max_retries:
                    raise
                logger.warning(
                    "Stream attempt %d failed (%s), retrying in %.1fs",
                    attempt,
                    e.user_message,
                    self.retry_delay * attempt,
                )
                try:
                    await deadline.sleep(self.retry_delay * attempt)
                except DeadlineExceeded as timeout:
                    raise ClientTimeoutError(timeout.detail) from timeout
                continue
            result.attempts = attempt
            return result

    async def _stream_once(self, payload: dict[str, str], deadline: Deadline) -> ClientResult:
        progress = _StreamProgress(last_chunk_at=self._clock())
        reading = deadline.child(label="stream read")
        request = self._http.build_request("POST", "/api/stream-generate", json=payload)
        response: httpx.Response | None = None
        watchdog: asyncio.Task | None = None
        try:
            # The server sends headers only once it has a first chunk or an error
            response = await reading.run(self._http.send(request, stream=True))
            if response.is_error:
                raise _error_from_response(response, await reading.run(response.aread()))
            progress.last_chunk_at = self._clock()
            watchdog = asyncio.create_task(self._watch_stall(progress, reading))
            chunks = response.aiter_text()
            while True:
                try:
                    chunk = await reading.run(anext(chunks), timeout=self.read_timeout)
                except StopAsyncIteration:
                    break
                if chunk:
                    progress.parts.append(chunk)
                    progress.last_chunk_at = self._clock()
        except DeadlineExceeded as e:
            if deadline.expired:
                return self._accept_partial(progress, e.detail, timeout=True)
            return self._accept_partial(progress, e.detail)
        except httpx.TransportError as e:
            return self._accept_partial(progress, f"connection error: {e!r}", retryable=True)
        finally:
            if watchdog is not None:
                watchdog.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watchdog
            if response is not None:
                await response.aclose()

        content = progress.content
        if not content.strip():
            raise GenerationFailedError("O servidor retornou uma resposta vazia.", retryable=True)
        return ClientResult(content=content, mode="streaming", partial=is_partial(content))

    async def _watch_stall(self, progress: _StreamProgress, reading: Deadline) -> None:
        while not reading.done:
            await asyncio.sleep(self.stall_check_interval)
            idle = self._clock() - progress.last_chunk_at
            if idle >= self.stall_timeout:
                reading.cancel(f"stalled for {idle:.1f}s")
                return

    def _accept_partial(
        self,
        progress: _StreamProgress,
        reason: str | None,
        *,
        timeout: bool = False,
        retryable: bool = False,
    ) -> ClientResult:
        content = progress.content
        if len(content) >= self.min_partial_length:
            logger.warning("Stream interrupted (%s); keeping %d chars as partial result", reason, len(content))
            return ClientResult(content=mark_partial(content), mode="streaming", partial=True)
        logger.warning("Stream interrupted (%s) with only %d chars", reason, len(content))
        if timeout:
            raise ClientTimeoutError(reason)
        raise GenerationFailedError(
            "A geração foi interrompida antes de produzir conteúdo suficiente.",
            status_code=502,
            error_type="stream_interrupted",
            retryable=retryable,
        )
