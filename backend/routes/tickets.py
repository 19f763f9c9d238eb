"""Ticket generation API: polled jobs, live streaming and synchronous generation.

POST /api/submit-job          -> creates a pending job, returns { jobId, status }
GET  /api/job-status?jobId=   -> status, message, progress, result when done
POST /api/mark-job-timeout    -> client gave up; no-op once the job finished
POST /api/stream-generate     -> chunked text/plain ticket
POST /api/generate-ticket     -> full ticket in the response
"""

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse, StreamingResponse

from ticketforge.errors import TicketForgeError
from ticketforge.jobs import Job
from ticketforge.schemas import (
    GenerateTicketResponse,
    GenerationRequest,
    JobStatusResponse,
    MarkTimeoutResponse,
    SubmitJobResponse,
    validate_generation_request,
)
from ticketforge.services import Services
from ticketforge.streaming import TicketStream

logger = logging.getLogger(__name__)
router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def _job_response(job: Job) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.id,
        status=job.status.value,
        message=job.message,
        progress_percent=job.progress_percent,
        result=job.result,
        error_detail=job.error_detail,
        metadata=job.metadata,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


# ---------------------------------------------------------------------------
# Polled jobs
# ---------------------------------------------------------------------------

@router.post(
    "/submit-job",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a ticket generation job",
)
async def submit_job(body: GenerationRequest, services: Services = Depends(get_services)):
    """Returns immediately; poll GET /api/job-status for the result."""
    validate_generation_request(body)
    services.ensure_configured()
    job = services.jobs.submit_job(body)
    return SubmitJobResponse(job_id=job.id)


@router.get("/job-status", response_model=JobStatusResponse)
async def job_status(
    job_id: str = Query(..., alias="jobId"),
    services: Services = Depends(get_services),
):
    return _job_response(services.jobs.get_job_status(job_id))


@router.post("/mark-job-timeout", response_model=MarkTimeoutResponse)
async def mark_job_timeout(
    job_id: str = Query(..., alias="jobId"),
    services: Services = Depends(get_services),
):
    """Idempotent. A job that already finished keeps its status and result."""
    job = services.jobs.mark_job_timeout(job_id)
    return MarkTimeoutResponse(success=True, status=job.status.value)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

async def _relay(stream: TicketStream) -> AsyncIterator[str]:
    # Headers are already sent: failures can only close the stream early
    try:
        async for chunk in stream:
            yield chunk
    except TicketForgeError as e:
        logger.warning("Stream closed early: %s (%s)", e.error_type, e.detail)
        raise
    finally:
        # Client disconnects end the relay without exhausting the upstream stream
        await stream.aclose()


@router.post("/stream-generate", summary="Generate a ticket as a live text stream")
async def stream_generate(body: GenerationRequest, services: Services = Depends(get_services)):
    """Chunked text/plain. Failures before the first byte get a non-2xx plain-text body."""
    try:
        validate_generation_request(body)
        services.ensure_configured()
        stream = await services.streaming.open(body)
    except TicketForgeError as e:
        logger.warning("Stream for scope=%s failed before start: %s (%s)", body.scope, e.error_type, e.detail)
        return PlainTextResponse(e.user_message, status_code=e.status_code)
    return StreamingResponse(
        _relay(stream),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Ticket-Source": stream.source,
        },
    )


# ---------------------------------------------------------------------------
# Synchronous
# ---------------------------------------------------------------------------

@router.post("/generate-ticket", response_model=GenerateTicketResponse)
async def generate_ticket(body: GenerationRequest, services: Services = Depends(get_services)):
    ticket, metadata = await services.generate_ticket(body)
    return GenerateTicketResponse(ticket=ticket, metadata=metadata)
