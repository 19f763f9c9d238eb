"""Generation job schema and status."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)

    @property
    def rank(self) -> int:
        return {"pending": 0, "processing": 1, "done": 2, "error": 2}[self.value]

    def can_become(self, other: JobStatus) -> bool:
        """Forward-only: pending -> processing -> {done, error}; pending may also error out."""
        if self.is_terminal:
            return False
        if other == self:
            return True
        return other.rank > self.rank


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class Job(BaseModel):
    """One ticket generation request, persisted for async polling."""

    id: str
    scope: str
    request_text: str
    status: JobStatus = JobStatus.PENDING
    message: str = ""
    progress_percent: int = Field(default=0, ge=0, le=100)
    result: str | None = None
    error_detail: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Fields a store update may touch; id, scope, request_text and created_at are immutable
MUTABLE_FIELDS = frozenset(
    {"status", "message", "progress_percent", "result", "error_detail", "metadata"}
)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"
