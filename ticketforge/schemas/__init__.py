"""Pydantic models for the HTTP surface."""

from ticketforge.schemas.tickets import (
    ErrorDetails,
    ErrorResponse,
    GenerateTicketResponse,
    GenerationRequest,
    JobStatusResponse,
    MarkTimeoutResponse,
    SubmitJobResponse,
    TicketMetadata,
    validate_generation_request,
)

__all__ = [
    "ErrorDetails",
    "ErrorResponse",
    "GenerateTicketResponse",
    "GenerationRequest",
    "JobStatusResponse",
    "MarkTimeoutResponse",
    "SubmitJobResponse",
    "TicketMetadata",
    "validate_generation_request",
]
