"""Pydantic models for the ticket generation API.

Wire names are camelCase (``requestText``, ``jobId``); the original Portuguese
field names ``sindicato`` / ``solicitacaoOriginal`` are still accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ticketforge.errors import InvalidRequestError


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """Body for submit-job, stream-generate and generate-ticket."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    scope: str = Field(default="", validation_alias=AliasChoices("scope", "sindicato"))
    request_text: str = Field(
        default="",
        validation_alias=AliasChoices("requestText", "request_text", "solicitacaoOriginal"),
        serialization_alias="requestText",
    )

    @field_validator("scope", "request_text", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v


def validate_generation_request(request: GenerationRequest) -> GenerationRequest:
    """Raise ``InvalidRequestError`` when scope or request text is blank."""
    missing = [
        name
        for name, value in (("scope", request.scope), ("requestText", request.request_text))
        if not value
    ]
    if missing:
        raise InvalidRequestError(
            "Escopo e descrição da solicitação são obrigatórios.",
            detail=f"missing fields: {', '.join(missing)}",
        )
    return request


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubmitJobResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    status: Literal["pending"] = "pending"


class JobStatusResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    status: str
    message: str = ""
    progress_percent: int = Field(default=0, alias="progressPercent")
    result: str | None = None
    error_detail: str | None = Field(default=None, alias="errorDetail")
    metadata: dict[str, Any] | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class MarkTimeoutResponse(_CamelModel):
    success: bool = True
    status: str


class TicketMetadata(_CamelModel):
    model: str | None = None
    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    source: Literal["cache", "model"] = "model"
    responsible: str | None = None


class GenerateTicketResponse(_CamelModel):
    success: bool = True
    ticket: str
    metadata: TicketMetadata


class ErrorDetails(BaseModel):
    type: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: ErrorDetails
